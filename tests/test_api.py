"""
HTTP surface: spec registration, run lifecycle routes, validation.

The client's orchestrator has an empty LLM script, so every accepted run
ends in `failed` with a gateway error once it reaches planning.
"""
import pytest

from tests.conftest import SPEC_DATA


async def _finished(run_id: str):
    from specpilot.main import app
    return await app.state.orchestrator.wait(run_id)


@pytest.mark.asyncio
async def test_register_and_list_specs(async_client):
    spec = dict(SPEC_DATA, id="orders-api", title="Orders API")
    response = await async_client.post("/api/specs", json=spec)
    assert response.status_code == 201
    assert response.json() == {"id": "orders-api", "title": "Orders API", "operations": 2}

    listed = (await async_client.get("/api/specs")).json()["specs"]
    assert {s["id"] for s in listed} == {"items-api", "orders-api"}


@pytest.mark.asyncio
async def test_register_invalid_spec_is_422(async_client):
    response = await async_client.post("/api/specs", json={"title": "no id"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_start_run_is_accepted(async_client):
    response = await async_client.post("/api/runs", json={"specId": "items-api", "maxIterations": 2})
    assert response.status_code == 202
    data = response.json()
    assert data["phase"] == "planning"

    await _finished(data["runId"])
    run = (await async_client.get(f"/api/runs/{data['runId']}")).json()
    assert run["runId"] == data["runId"]
    assert run["maxIterations"] == 2
    assert run["phase"] == "failed"
    assert run["errorKind"] == "GatewayUnavailable"
    assert run["outcome"] == "not_executed"
    assert run["log"]

    runs = (await async_client.get("/api/runs")).json()["runs"]
    assert [r["runId"] for r in runs] == [data["runId"]]


@pytest.mark.asyncio
async def test_unknown_spec_is_a_failed_run_not_404(async_client):
    response = await async_client.post("/api/runs", json={"specId": "missing"})
    assert response.status_code == 202
    state = await _finished(response.json()["runId"])
    assert state.error_kind == "SpecNotFound"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    {"specId": "items-api", "maxIterations": 0},
    {"specId": "items-api", "basePackage": "not-a-package"},
    {"specId": "items-api", "operationFilter": {"mode": "everything"}},
    {"maxIterations": 3},
])
async def test_invalid_run_requests_are_422(async_client, body):
    response = await async_client.post("/api/runs", json=body)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unknown_run_is_404(async_client):
    assert (await async_client.get("/api/runs/nope")).status_code == 404
    assert (await async_client.get("/api/runs/nope/files")).status_code == 404
    assert (await async_client.post("/api/runs/nope/cancel")).status_code == 404


@pytest.mark.asyncio
async def test_files_and_cancel_of_finished_run(async_client):
    run_id = (await async_client.post("/api/runs", json={"specId": "items-api"})).json()["runId"]
    await _finished(run_id)

    files = await async_client.get(f"/api/runs/{run_id}/files")
    assert files.status_code == 200
    assert files.json() == {"files": []}

    cancel = (await async_client.post(f"/api/runs/{run_id}/cancel")).json()
    assert cancel == {"runId": run_id, "cancelRequested": False, "phase": "failed"}
