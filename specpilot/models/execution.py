# specpilot/models/execution.py
"""
Execution and self-heal models.
"""
from enum import Enum
from typing import Dict, List, Optional

from pydantic import Field

from .spec import CamelModel


class TestStatus(str, Enum):
    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    SKIPPED = "skipped"


class TestCaseResult(CamelModel):
    __test__ = False

    name: str
    classname: str = ""
    file: Optional[str] = None
    status: TestStatus
    message: str = ""
    observed_status: Optional[int] = None
    expected_status: Optional[int] = None
    duration_seconds: float = 0.0

    @property
    def is_failure(self) -> bool:
        return self.status in (TestStatus.FAILED, TestStatus.ERROR)


class ExecutionResult(CamelModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    tests: List[TestCaseResult] = Field(default_factory=list)
    raw_output: str = ""
    exit_code: Optional[int] = None
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.failed == 0 and self.total > 0

    def failures(self) -> List[TestCaseResult]:
        return [t for t in self.tests if t.is_failure]


class TestFix(CamelModel):
    __test__ = False

    file_path: str
    content: str
    rationale: str = ""


class RejectedFix(CamelModel):
    """A proposed fix the negative-test guard refused (HealRejected)."""
    file_path: str
    reason: str
    test_name: Optional[str] = None


class HealReport(CamelModel):
    """Everything one reflect step decided, not only the accepted fixes."""
    failure_source: str = "unknown"
    summary: str = ""
    fixes: List[TestFix] = Field(default_factory=list)
    rejected: List[RejectedFix] = Field(default_factory=list)
    genuine_failures: List[str] = Field(default_factory=list)
    false_positives: List[str] = Field(default_factory=list)
    api_defects: List[str] = Field(default_factory=list)
    llm_called: bool = False


class ApplyOutcome(CamelModel):
    """Result of persisting fixes and compile-checking them."""
    applied: List[TestFix] = Field(default_factory=list)
    reverted: List[TestFix] = Field(default_factory=list)
    # Pre-fix content per path; None means the file did not exist
    backup: Dict[str, Optional[str]] = Field(default_factory=dict)

    @property
    def heal_failed(self) -> bool:
        return bool(self.reverted)
