"""
Orchestrator: full runs over scripted LLM and pytest.

INVARIANTS:
1. Remaining test failures end a run in `done`, never `failed`
2. Infrastructure failure before any fix -> `failed`; after a fix -> fixes reverted, `done`
3. The healer is never asked for fixes that the iteration budget cannot execute
4. Cancellation is honoured before the next fix is requested
"""
import asyncio
from pathlib import Path

import pytest

from specpilot.core.exceptions import RunNotFoundError
from specpilot.models import OperationFilter, RunOutcome, RunPhase

from tests.conftest import CLASSNAME, EXPECTED_STATUSES, MODULE_PATH, PLAN_RESPONSE
from tests.utils.scripted import (
    ScriptedLLM,
    ScriptedRunner,
    generated_module,
    heal_response,
    pytest_crash,
    pytest_run,
)

ALL_PASS = [(CLASSNAME, name, "passed", "") for name in EXPECTED_STATUSES]
CREATE_FAILS = [
    (CLASSNAME, name, "failed", "expected status 201 but was 422") if name == "test_create_item"
    else (CLASSNAME, name, "passed", "")
    for name in EXPECTED_STATUSES
]
HEALED_MODULE = generated_module(EXPECTED_STATUSES) + "\n# healed: send a complete body\n"


def _messages(state):
    return [entry.message for entry in state.log]


async def _run(orchestrator, spec_id="items-api", **kwargs):
    run_id = orchestrator.start_run(spec_id, **kwargs)
    return await orchestrator.wait(run_id)


# ════════════════════════════════════════════════════════════════════
# Terminal outcomes
# ════════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_all_tests_pass_first_time(build_orchestrator, writer_response):
    llm = ScriptedLLM(PLAN_RESPONSE, writer_response)
    runner = ScriptedRunner(pytest_run(ALL_PASS))
    state = await _run(build_orchestrator(llm, runner))

    assert state.phase == RunPhase.DONE
    assert state.outcome == RunOutcome.ALL_PASSED
    assert state.iteration == 0
    assert state.final_result.passed == 7
    assert len(state.results) == 1
    assert len(state.plan.items) == 7
    assert llm.calls == 2
    assert any(m.startswith("Plan: 7 tests (2 positive, 3 negative, 2 edge-case), 1 dependencies") for m in _messages(state))
    assert Path(state.project_path, MODULE_PATH).exists()
    assert Path(state.project_path, ".reports", "summary.md").exists()


@pytest.mark.asyncio
async def test_fix_then_pass(build_orchestrator, writer_response):
    llm = ScriptedLLM(PLAN_RESPONSE, writer_response, heal_response({MODULE_PATH: HEALED_MODULE}))
    runner = ScriptedRunner(pytest_run(CREATE_FAILS), pytest_run(ALL_PASS))
    state = await _run(build_orchestrator(llm, runner))

    assert state.phase == RunPhase.DONE
    assert state.outcome == RunOutcome.ALL_PASSED
    assert state.iteration == 1
    assert [(r.iteration, r.failed, r.fixes_applied) for r in state.results] == [(0, 1, 1), (1, 0, 0)]
    assert runner.pytest_calls == 2
    assert "# healed" in Path(state.project_path, MODULE_PATH).read_text(encoding="utf-8")
    assert "Diagnosis: test-code - fixed" in _messages(state)


@pytest.mark.asyncio
async def test_remaining_failures_end_in_done(build_orchestrator, writer_response):
    llm = ScriptedLLM(PLAN_RESPONSE, writer_response, heal_response({MODULE_PATH: HEALED_MODULE}))
    runner = ScriptedRunner(pytest_run(CREATE_FAILS), pytest_run(CREATE_FAILS))
    state = await _run(build_orchestrator(llm, runner), max_iterations=2)

    assert state.phase == RunPhase.DONE
    assert state.outcome == RunOutcome.REMAINING_FAILURES
    assert state.iteration == 1
    assert state.final_result.failed == 1
    assert "Iteration budget exhausted (2) - 6/7 passed, 1 failed" in _messages(state)


@pytest.mark.asyncio
async def test_budget_of_one_never_asks_for_fixes(build_orchestrator, writer_response):
    llm = ScriptedLLM(PLAN_RESPONSE, writer_response)
    runner = ScriptedRunner(pytest_run(CREATE_FAILS))
    state = await _run(build_orchestrator(llm, runner), max_iterations=1)

    assert state.phase == RunPhase.DONE
    assert state.outcome == RunOutcome.REMAINING_FAILURES
    assert llm.calls == 2
    assert runner.pytest_calls == 1


@pytest.mark.asyncio
async def test_no_applicable_fixes_ends_run(build_orchestrator, writer_response):
    llm = ScriptedLLM(PLAN_RESPONSE, writer_response, heal_response({}, summary="nothing to change"))
    runner = ScriptedRunner(pytest_run(CREATE_FAILS))
    state = await _run(build_orchestrator(llm, runner))

    assert state.phase == RunPhase.DONE
    assert state.outcome == RunOutcome.REMAINING_FAILURES
    assert any(m.startswith("No applicable fixes (nothing to change)") for m in _messages(state))


@pytest.mark.asyncio
async def test_expected_failure_observed_as_error_is_not_healed(build_orchestrator, writer_response):
    cases = [
        (CLASSNAME, name, "failed", "expected status 400 but was 404") if name == "test_get_item_zero_id"
        else (CLASSNAME, name, "passed", "")
        for name in EXPECTED_STATUSES
    ]
    llm = ScriptedLLM(PLAN_RESPONSE, writer_response)
    state = await _run(build_orchestrator(llm, ScriptedRunner(pytest_run(cases))))

    assert state.phase == RunPhase.DONE
    assert state.outcome == RunOutcome.REMAINING_FAILURES
    assert llm.calls == 2


# ════════════════════════════════════════════════════════════════════
# Infrastructure failures
# ════════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_infrastructure_failure_before_fixes_fails_run(build_orchestrator, writer_response):
    llm = ScriptedLLM(PLAN_RESPONSE, writer_response)
    runner = ScriptedRunner(pytest_crash("ModuleNotFoundError: No module named 'httpx'"))
    state = await _run(build_orchestrator(llm, runner))

    assert state.phase == RunPhase.FAILED
    assert state.error_kind == "InfrastructureFailure"
    assert state.outcome == RunOutcome.NOT_EXECUTED
    assert state.final_result is None
    assert state.completed_at is not None


@pytest.mark.asyncio
async def test_infrastructure_failure_after_fix_reverts(build_orchestrator, writer_response):
    llm = ScriptedLLM(PLAN_RESPONSE, writer_response, heal_response({MODULE_PATH: HEALED_MODULE}))
    runner = ScriptedRunner(pytest_run(CREATE_FAILS), pytest_crash())
    state = await _run(build_orchestrator(llm, runner))

    assert state.phase == RunPhase.DONE
    assert state.outcome == RunOutcome.REMAINING_FAILURES
    assert state.final_result.failed == 1
    assert any(m.startswith("Fixes reverted") for m in _messages(state))
    content = Path(state.project_path, MODULE_PATH).read_text(encoding="utf-8")
    assert "# healed" not in content
    assert "def test_create_item" in content


@pytest.mark.asyncio
async def test_fix_that_does_not_compile_ends_run(build_orchestrator, writer_response):
    llm = ScriptedLLM(PLAN_RESPONSE, writer_response, heal_response({MODULE_PATH: "def test_create_item(:\n"}))
    runner = ScriptedRunner(pytest_run(CREATE_FAILS))
    state = await _run(build_orchestrator(llm, runner))

    assert state.phase == RunPhase.DONE
    assert state.results[0].heal_failed
    assert state.results[0].fixes_applied == 0
    assert "def test_create_item(client, shared):" in Path(state.project_path, MODULE_PATH).read_text(encoding="utf-8")


# ════════════════════════════════════════════════════════════════════
# Failed runs
# ════════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_unknown_spec_fails_run(build_orchestrator):
    llm = ScriptedLLM()
    state = await _run(build_orchestrator(llm, ScriptedRunner()), spec_id="missing")

    assert state.phase == RunPhase.FAILED
    assert state.error_kind == "SpecNotFound"
    assert llm.calls == 0


@pytest.mark.asyncio
async def test_gateway_error_fails_run(build_orchestrator):
    llm = ScriptedLLM(ConnectionError("connection refused"))
    state = await _run(build_orchestrator(llm, ScriptedRunner()))

    assert state.phase == RunPhase.FAILED
    assert state.error_kind == "GatewayUnavailable"
    assert state.project_path is None


@pytest.mark.asyncio
async def test_filter_matching_nothing_fails_run(build_orchestrator):
    state = await _run(
        build_orchestrator(ScriptedLLM(), ScriptedRunner()),
        operation_filter=OperationFilter(mode="tag", tags=["billing"]),
    )
    assert state.phase == RunPhase.FAILED
    assert state.error_kind == "EmptyPlan"


def test_max_iterations_must_be_positive(build_orchestrator):
    orchestrator = build_orchestrator(ScriptedLLM(), ScriptedRunner())
    with pytest.raises(ValueError):
        orchestrator.start_run("items-api", max_iterations=0)
    assert len(orchestrator.registry) == 0


# ════════════════════════════════════════════════════════════════════
# Cancellation, concurrency, files
# ════════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_cancel_stops_before_next_fix(build_orchestrator, writer_response):
    llm = ScriptedLLM(PLAN_RESPONSE, writer_response)
    run = {}
    runner = ScriptedRunner(
        pytest_run(CREATE_FAILS),
        on_pytest=lambda: run["orchestrator"].cancel_run(run["id"]),
    )
    orchestrator = build_orchestrator(llm, runner)
    run["orchestrator"] = orchestrator
    run["id"] = orchestrator.start_run("items-api")
    state = await orchestrator.wait(run["id"])

    assert state.phase == RunPhase.DONE
    assert "Run cancelled" in _messages(state)
    assert llm.calls == 2
    assert not orchestrator.cancel_run(run["id"])


@pytest.mark.asyncio
async def test_concurrent_runs_use_separate_directories(build_orchestrator, writer_response):
    def answer(prompt):
        return writer_response if "test_get_item_zero_id" in prompt else PLAN_RESPONSE

    llm = ScriptedLLM(answer, answer, answer, answer)
    runner = ScriptedRunner(pytest_run(ALL_PASS), pytest_run(ALL_PASS))
    orchestrator = build_orchestrator(llm, runner)

    first = orchestrator.start_run("items-api")
    second = orchestrator.start_run("items-api")
    states = await asyncio.gather(orchestrator.wait(first), orchestrator.wait(second))

    assert first != second
    assert [s.phase for s in states] == [RunPhase.DONE, RunPhase.DONE]
    assert states[0].project_path != states[1].project_path


@pytest.mark.asyncio
async def test_list_generated_files(build_orchestrator, writer_response):
    orchestrator = build_orchestrator(ScriptedLLM(PLAN_RESPONSE, writer_response), ScriptedRunner(pytest_run(ALL_PASS)))
    run_id = orchestrator.start_run("items-api")
    await orchestrator.wait(run_id)

    files = {f.path: f for f in await orchestrator.list_generated_files(run_id)}
    assert files[MODULE_PATH].detected_language == "python"
    assert "README.md" in files

    with pytest.raises(RunNotFoundError):
        await orchestrator.list_generated_files("missing")


@pytest.mark.asyncio
async def test_status_snapshots_are_copies(build_orchestrator, writer_response):
    orchestrator = build_orchestrator(ScriptedLLM(PLAN_RESPONSE, writer_response), ScriptedRunner(pytest_run(ALL_PASS)))
    run_id = orchestrator.start_run("items-api")
    await orchestrator.wait(run_id)

    snapshot = orchestrator.get_status(run_id)
    snapshot.log.clear()
    assert orchestrator.get_status(run_id).log
    assert orchestrator.get_status("missing") is None
