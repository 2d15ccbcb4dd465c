# specpilot/orchestration/registry.py
"""
Process-wide run registry.

Anyone may create runs and read snapshots. Once a driving task has claimed
a run, only that task may mutate it, and only through the methods below.
Nothing here survives a process restart.
"""
import asyncio
import uuid
from typing import Dict, List, Optional, Set

from specpilot.core.exceptions import (
    InvalidTransitionError,
    RegistryOwnershipError,
    RunNotFoundError,
)
from specpilot.core.logging import log, log_run
from specpilot.models import (
    ALLOWED_TRANSITIONS,
    ExecutionResult,
    IterationResult,
    LogEntry,
    RunOutcome,
    RunPhase,
    RunState,
    TestPlan,
)
from specpilot.models.run import utc_now


class RunRegistry:
    """In-memory map runId -> RunState with a narrow mutation surface."""

    def __init__(self):
        self._runs: Dict[str, RunState] = {}
        self._owners: Dict[str, asyncio.Task] = {}
        self._cancel_requested: Set[str] = set()

    # ─────────────────────────────────────────────────────────
    # Create / read
    # ─────────────────────────────────────────────────────────

    def create(self, spec_id: str, max_iterations: int) -> RunState:
        run_id = str(uuid.uuid4())
        state = RunState(run_id=run_id, spec_id=spec_id, max_iterations=max_iterations)
        self._runs[run_id] = state
        log("REGISTRY", f"Registered run {run_id} for spec {spec_id}")
        return state.model_copy(deep=True)

    def snapshot(self, run_id: str) -> Optional[RunState]:
        """Deep copy of the run state, or None for an unknown run."""
        state = self._runs.get(run_id)
        return state.model_copy(deep=True) if state is not None else None

    def ids(self) -> List[str]:
        return list(self._runs)

    def __contains__(self, run_id: str) -> bool:
        return run_id in self._runs

    def __len__(self) -> int:
        return len(self._runs)

    # ─────────────────────────────────────────────────────────
    # Ownership
    # ─────────────────────────────────────────────────────────

    def claim(self, run_id: str) -> None:
        """Bind the run to the calling task. Must run inside that task."""
        self._get(run_id)
        self._owners[run_id] = asyncio.current_task()

    def release(self, run_id: str) -> None:
        self._owners.pop(run_id, None)
        self._cancel_requested.discard(run_id)

    def _get(self, run_id: str) -> RunState:
        state = self._runs.get(run_id)
        if state is None:
            raise RunNotFoundError(run_id)
        return state

    def _owned(self, run_id: str) -> RunState:
        state = self._get(run_id)
        owner = self._owners.get(run_id)
        if owner is None:
            return state
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if current is not owner:
            raise RegistryOwnershipError(run_id)
        return state

    # ─────────────────────────────────────────────────────────
    # Mutations (driving task only)
    # ─────────────────────────────────────────────────────────

    def append_log(self, run_id: str, message: str) -> None:
        state = self._owned(run_id)
        state.log.append(LogEntry(phase=state.phase, message=message))
        log_run(run_id, state.phase.value, message)

    def set_phase(self, run_id: str, phase: RunPhase) -> None:
        state = self._owned(run_id)
        if phase not in ALLOWED_TRANSITIONS[state.phase]:
            raise InvalidTransitionError(state.phase.value, phase.value)
        state.phase = phase
        if phase.is_terminal:
            state.completed_at = utc_now()
        log("REGISTRY", f"Phase -> {phase.value}", run_id=run_id)

    def set_plan(self, run_id: str, plan: TestPlan) -> None:
        self._owned(run_id).plan = plan.model_copy(deep=True)

    def set_project_path(self, run_id: str, project_path: str) -> None:
        self._owned(run_id).project_path = project_path

    def set_iteration(self, run_id: str, iteration: int) -> None:
        state = self._owned(run_id)
        if iteration < state.iteration:
            raise ValueError(f"iteration counter cannot go back ({state.iteration} -> {iteration})")
        state.iteration = iteration

    def add_iteration_result(self, run_id: str, result: IterationResult) -> None:
        self._owned(run_id).results.append(result)

    def set_result(self, run_id: str, result: ExecutionResult, outcome: RunOutcome) -> None:
        state = self._owned(run_id)
        if state.final_result is not None:
            raise ValueError(f"final result of run {run_id} is already set")
        state.final_result = result.model_copy(deep=True)
        state.outcome = outcome

    def set_error(self, run_id: str, kind: str, message: str) -> None:
        state = self._owned(run_id)
        state.error = message
        state.error_kind = kind
        state.outcome = RunOutcome.NOT_EXECUTED

    # ─────────────────────────────────────────────────────────
    # Cancellation (any caller)
    # ─────────────────────────────────────────────────────────

    def request_cancel(self, run_id: str) -> bool:
        """Flag the run; False if unknown or already terminal."""
        state = self._runs.get(run_id)
        if state is None or state.phase.is_terminal:
            return False
        self._cancel_requested.add(run_id)
        return True

    def is_cancel_requested(self, run_id: str) -> bool:
        return run_id in self._cancel_requested
