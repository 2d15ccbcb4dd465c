# specpilot/api/runs.py
"""
Spec registration and run routes.

Runs are accepted synchronously and executed in the background; clients
poll GET /api/runs/{run_id} for progress.
"""
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import Field

from specpilot.core.config import settings
from specpilot.core.exceptions import RunNotFoundError
from specpilot.core.logging import log
from specpilot.models import NormalizedSpec, OperationFilter
from specpilot.models.spec import CamelModel
from specpilot.orchestration.orchestrator import Orchestrator
from specpilot.specs.provider import InMemorySpecProvider

router = APIRouter(prefix="/api", tags=["Runs"])


class StartRunRequest(CamelModel):
    spec_id: str
    max_iterations: int = Field(default_factory=lambda: settings.run.default_max_iterations, ge=1, le=20)
    base_directory: Optional[str] = None
    base_package: Optional[str] = Field(default=None, pattern=r"^[A-Za-z_][A-Za-z0-9_.]*$")
    operation_filter: Optional[OperationFilter] = None


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def get_spec_provider(request: Request) -> InMemorySpecProvider:
    return request.app.state.spec_provider


# ============================================================================
# SPECS
# ============================================================================

@router.post("/specs", status_code=201)
async def register_spec(request: Request, spec: NormalizedSpec):
    """Register an already-normalized spec."""
    get_spec_provider(request).add(spec)
    log("API", f"📥 Registered spec {spec.id} ({len(spec.operations)} operations)")
    return {"id": spec.id, "title": spec.title, "operations": len(spec.operations)}


@router.get("/specs")
async def list_specs(request: Request):
    return {
        "specs": [
            {"id": s.id, "title": s.title, "version": s.version, "operations": len(s.operations)}
            for s in get_spec_provider(request).list_specs()
        ]
    }


# ============================================================================
# RUNS
# ============================================================================

@router.post("/runs", status_code=202)
async def start_run(request: Request, data: StartRunRequest):
    """Start a run. Unknown spec ids surface as a failed run, not a 404."""
    orchestrator = get_orchestrator(request)
    run_id = orchestrator.start_run(
        data.spec_id,
        max_iterations=data.max_iterations,
        base_directory=Path(data.base_directory) if data.base_directory else None,
        base_package=data.base_package,
        operation_filter=data.operation_filter,
    )
    state = orchestrator.get_status(run_id)
    return {"runId": run_id, "phase": state.phase.value}


@router.get("/runs")
async def list_runs(request: Request):
    orchestrator = get_orchestrator(request)
    runs = []
    for run_id in orchestrator.registry.ids():
        state = orchestrator.get_status(run_id)
        runs.append({
            "runId": run_id,
            "specId": state.spec_id,
            "phase": state.phase.value,
            "outcome": state.outcome.value if state.outcome else None,
        })
    return {"runs": runs}


@router.get("/runs/{run_id}")
async def get_run(request: Request, run_id: str):
    state = get_orchestrator(request).get_status(run_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    return state.model_dump(by_alias=True, mode="json")


@router.get("/runs/{run_id}/files")
async def get_run_files(request: Request, run_id: str):
    try:
        files = await get_orchestrator(request).list_generated_files(run_id)
    except RunNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return {"files": [f.model_dump(by_alias=True) for f in files]}


@router.post("/runs/{run_id}/cancel")
async def cancel_run(request: Request, run_id: str):
    orchestrator = get_orchestrator(request)
    state = orchestrator.get_status(run_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    accepted = orchestrator.cancel_run(run_id)
    return {"runId": run_id, "cancelRequested": accepted, "phase": state.phase.value}
