# specpilot/models/__init__.py
from .spec import NormalizedSpec, Operation, Parameter, RequestBody, ResponseSpec
from .plan import (
    TestCategory,
    TestPlan,
    TestPlanItem,
    OperationDependency,
    is_error_status,
    is_success_status,
    test_function_name,
)
from .execution import (
    ApplyOutcome,
    ExecutionResult,
    HealReport,
    RejectedFix,
    TestCaseResult,
    TestFix,
    TestStatus,
)
from .run import (
    ALLOWED_TRANSITIONS,
    IterationResult,
    LogEntry,
    OperationFilter,
    RunOutcome,
    RunPhase,
    RunState,
)

__all__ = [
    "NormalizedSpec", "Operation", "Parameter", "RequestBody", "ResponseSpec",
    "TestCategory", "TestPlan", "TestPlanItem", "OperationDependency",
    "is_error_status", "is_success_status", "test_function_name",
    "ApplyOutcome", "ExecutionResult", "HealReport", "RejectedFix",
    "TestCaseResult", "TestFix", "TestStatus",
    "ALLOWED_TRANSITIONS", "IterationResult", "LogEntry", "OperationFilter",
    "RunOutcome", "RunPhase", "RunState",
]
