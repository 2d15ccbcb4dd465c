# specpilot/models/plan.py
"""
Test plan models.
"""
import re
from enum import Enum
from typing import Dict, List, Optional

from pydantic import Field

from .spec import CamelModel


class TestCategory(str, Enum):
    __test__ = False

    POSITIVE = "positive"
    NEGATIVE = "negative"
    EDGE_CASE = "edge-case"


def is_error_status(status: Optional[int]) -> bool:
    return status is not None and 400 <= status < 600


def is_success_status(status: Optional[int]) -> bool:
    return status is not None and 200 <= status < 300


def test_function_name(operation_id: str) -> str:
    """
    Deterministic pytest function name for a plan item.

    createItem_emptyBody -> test_create_item_empty_body
    """
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", operation_id)
    name = re.sub(r"[^0-9a-zA-Z]+", "_", name).strip("_").lower()
    return f"test_{name or 'operation'}"


# Keeps pytest from collecting it when imported into a test module
test_function_name.__test__ = False


class OperationDependency(CamelModel):
    source_operation_id: str
    target_operation_id: str
    data_flow: str = ""


class TestPlanItem(CamelModel):
    __test__ = False

    operation_id: str
    method: str
    path: str
    description: str = ""
    category: TestCategory = TestCategory.POSITIVE
    expected_status: int = 200
    priority: int = 0
    depends_on: List[str] = Field(default_factory=list)
    assertions: List[str] = Field(default_factory=list)
    needs_body: bool = False
    suggested_body: Optional[str] = None

    @property
    def test_name(self) -> str:
        return test_function_name(self.operation_id)

    @property
    def is_expected_failure(self) -> bool:
        """Negative/edge item whose success criterion is an error response."""
        return self.category != TestCategory.POSITIVE and is_error_status(self.expected_status)


class TestPlan(CamelModel):
    __test__ = False

    title: str
    base_url: str
    items: List[TestPlanItem] = Field(default_factory=list)
    dependencies: List[OperationDependency] = Field(default_factory=list)
    reasoning: str = ""
    degraded: bool = False

    def item_by_test_name(self, name: str) -> Optional[TestPlanItem]:
        # Parametrized ids ("test_x[a]") map to their base function
        base = name.split("[", 1)[0]
        for item in self.items:
            if item.test_name == base:
                return item
        return None

    def counts(self) -> Dict[str, int]:
        counts = {category.value: 0 for category in TestCategory}
        for item in self.items:
            counts[item.category.value] += 1
        return counts
