# specpilot/models/run.py
"""
Run state models and the phase transition table.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import Field, field_validator

from .spec import CamelModel, Operation
from .plan import TestPlan
from .execution import ExecutionResult


class RunPhase(str, Enum):
    PLANNING = "planning"
    WRITING = "writing"
    EXECUTING = "executing"
    REFLECTING = "reflecting"
    FIXING = "fixing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunPhase.DONE, RunPhase.FAILED)


ALLOWED_TRANSITIONS: Dict[RunPhase, FrozenSet[RunPhase]] = {
    RunPhase.PLANNING: frozenset({RunPhase.WRITING, RunPhase.FAILED}),
    RunPhase.WRITING: frozenset({RunPhase.EXECUTING, RunPhase.FAILED}),
    RunPhase.EXECUTING: frozenset({RunPhase.REFLECTING, RunPhase.DONE, RunPhase.FAILED}),
    RunPhase.REFLECTING: frozenset({RunPhase.FIXING, RunPhase.DONE, RunPhase.FAILED}),
    RunPhase.FIXING: frozenset({RunPhase.EXECUTING, RunPhase.DONE, RunPhase.FAILED}),
    RunPhase.DONE: frozenset(),
    RunPhase.FAILED: frozenset(),
}


class RunOutcome(str, Enum):
    ALL_PASSED = "all_passed"
    REMAINING_FAILURES = "remaining_failures"
    NOT_EXECUTED = "not_executed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LogEntry(CamelModel):
    timestamp: datetime = Field(default_factory=utc_now)
    phase: RunPhase
    message: str


class IterationResult(CamelModel):
    iteration: int
    passed: int
    failed: int
    total: int
    fixes_applied: int = 0
    fixes_rejected: int = 0
    heal_failed: bool = False
    api_defects: List[str] = Field(default_factory=list)


class OperationFilter(CamelModel):
    """Which operations a run covers: full | tag | single."""
    mode: str = "full"
    tags: List[str] = Field(default_factory=list)
    operation_ids: List[str] = Field(default_factory=list)

    @field_validator("mode")
    @classmethod
    def _check_mode(cls, value: str) -> str:
        if value not in ("full", "tag", "single"):
            raise ValueError(f"unknown operation filter mode: {value}")
        return value

    def apply(self, operations: List[Operation]) -> List[Operation]:
        if self.mode == "tag":
            wanted = set(self.tags)
            return [op for op in operations if wanted.intersection(op.tags)]
        if self.mode == "single":
            wanted = set(self.operation_ids)
            return [op for op in operations if op.operation_id in wanted]
        return list(operations)


class RunState(CamelModel):
    run_id: str
    spec_id: str
    phase: RunPhase = RunPhase.PLANNING
    iteration: int = 0
    max_iterations: int
    log: List[LogEntry] = Field(default_factory=list)
    plan: Optional[TestPlan] = None
    project_path: Optional[str] = None
    results: List[IterationResult] = Field(default_factory=list)
    final_result: Optional[ExecutionResult] = None
    outcome: Optional[RunOutcome] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
