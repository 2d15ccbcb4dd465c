# specpilot/agents/planner.py
"""
Planner - spec -> ordered TestPlan.

Hybrid generation:
- the LLM authors one happy-path test per operation plus the data flow
  between operations;
- negative and edge-case tests are generated deterministically, so their
  number depends only on operation shape and never on the model.

An unparsable LLM answer is not an error: the plan degrades to one minimal
positive test per operation and says so in `reasoning`. A provider error is
different and propagates as GatewayUnavailableError.
"""
import json
from typing import Any, Dict, List, Optional, Tuple

from specpilot.core.config import LLMSettings, settings
from specpilot.core.logging import log
from specpilot.llm.adapter import LLMGateway
from specpilot.llm.prompts import PLANNER_SYSTEM_PROMPT, build_planner_prompt
from specpilot.models import (
    NormalizedSpec,
    Operation,
    OperationDependency,
    TestCategory,
    TestPlan,
    TestPlanItem,
    is_success_status,
)
from specpilot.orchestration.task_graph import DependencyGraph
from specpilot.utils.parser import parse_json_object


BODY_SCHEMA_PREVIEW = 500
COMPONENT_SCHEMA_PREVIEW = 400

NONEXISTENT_ID = "99999"
MALFORMED_ID = "abc"

# Wrong-typed value per declared JSON schema type
TYPE_MISMATCH_VALUES: Dict[str, Any] = {
    "string": 12345,
    "integer": "not-a-number",
    "number": "not-a-number",
    "boolean": "not-a-boolean",
    "array": "not-an-array",
    "object": "not-an-object",
}

SPECIAL_STRINGS = [
    "<script>alert('xss')</script>",
    "O'Reilly & Sons \"quoted\" \\ back",
    "Ünïcödé ✓ 測試 émoji 🚀",
]

VALID_PLACEHOLDERS: Dict[str, Any] = {
    "integer": 1,
    "number": 1.5,
    "boolean": True,
    "array": [],
    "object": {},
}


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "...(truncated)"


def _as_str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


class Planner:
    """Produces the ordered test plan for a set of operations."""

    def __init__(self, gateway: LLMGateway, config: Optional[LLMSettings] = None):
        self.gateway = gateway
        self.config = config or settings.llm

    # ═══════════════════════════════════════════════════════════════════════
    # ENTRY POINT
    # ═══════════════════════════════════════════════════════════════════════

    async def plan(
        self,
        spec: NormalizedSpec,
        operations: Optional[List[Operation]] = None,
        run_id: Optional[str] = None,
    ) -> TestPlan:
        operations = list(spec.operations if operations is None else operations)
        log("PLANNER", f"📋 Planning {len(operations)} operations for '{spec.title}'", run_id=run_id)

        result = await self.gateway.complete(
            PLANNER_SYSTEM_PROMPT,
            build_planner_prompt(self.build_spec_summary(spec, operations)),
            temperature=self.config.planner_temperature,
            max_tokens=self.config.planner_max_tokens,
        )
        raw = result.unwrap()

        llm_plan = self.parse_response(raw, spec, operations)
        if llm_plan is None:
            log("PLANNER", "⚠️ LLM plan could not be parsed, using fallback plan", run_id=run_id)
            llm_plan = self.fallback_plan(spec, operations)

        negatives = self.generate_negative_tests(operations)
        edges = self.generate_edge_case_tests(operations)
        plan = self.merge(llm_plan, negatives, edges)

        counts = plan.counts()
        log(
            "PLANNER",
            f"✅ Plan ready: {counts['positive']} positive, {counts['negative']} negative, "
            f"{counts['edge-case']} edge-case, {len(plan.dependencies)} dependencies",
            run_id=run_id,
        )
        return plan

    # ═══════════════════════════════════════════════════════════════════════
    # LLM INPUT / OUTPUT
    # ═══════════════════════════════════════════════════════════════════════

    def build_spec_summary(self, spec: NormalizedSpec, operations: List[Operation]) -> str:
        lines = [f"# {spec.title} v{spec.version}", f"Base URL: {spec.base_url}", "", "## Operations"]
        for op in operations:
            lines.append(f"### {op.upper_method} {op.path} (operationId: {op.operation_id})")
            if op.summary:
                lines.append(f"Summary: {op.summary}")
            if op.tags:
                lines.append(f"Tags: {', '.join(op.tags)}")
            if op.parameters:
                lines.append("Parameters:")
                for p in op.parameters:
                    ptype = (p.schema_ or {}).get("type", "string")
                    required = ", required" if p.required else ""
                    lines.append(f"- {p.name} ({p.location}{required}): {ptype}")
            if op.body_schema:
                required = " (required)" if op.request_body and op.request_body.required else ""
                preview = _truncate(json.dumps(op.body_schema), BODY_SCHEMA_PREVIEW)
                lines.append(f"Request body{required}: {preview}")
            if op.responses:
                codes = ", ".join(
                    f"{r.status_code}" + (f" ({r.description})" if r.description else "")
                    for r in op.responses
                )
                lines.append(f"Responses: {codes}")
            lines.append("")

        if spec.schemas:
            lines.append("## Schemas")
            for name, schema in spec.schemas.items():
                lines.append(f"- {name}: {_truncate(json.dumps(schema), COMPONENT_SCHEMA_PREVIEW)}")
        return "\n".join(lines)

    def parse_response(
        self,
        raw: str,
        spec: NormalizedSpec,
        operations: List[Operation],
    ) -> Optional[TestPlan]:
        """
        LLM text -> positive-only TestPlan, or None when the text is not the
        expected structure.

        Items for unknown operations are dropped, one item per operation is
        kept, and operations the model skipped are back-filled.
        """
        data = parse_json_object(raw)
        if data is None or not isinstance(data.get("items"), list):
            return None

        by_id = {op.operation_id: op for op in operations}
        items: List[TestPlanItem] = []
        seen = set()
        for entry in data["items"]:
            if not isinstance(entry, dict):
                continue
            op = by_id.get(str(entry.get("operationId", "")))
            if op is None or op.operation_id in seen:
                continue
            seen.add(op.operation_id)
            items.append(self._item_from_llm(entry, op))

        if not items:
            return None

        missing = [op for op in operations if op.operation_id not in seen]
        if missing:
            log("PLANNER", f"Back-filling {len(missing)} operations the LLM skipped: "
                           f"{', '.join(op.operation_id for op in missing)}")
            items.extend(self._minimal_positive(op) for op in missing)

        dependencies: List[OperationDependency] = []
        for entry in data.get("dependencies") or []:
            if not isinstance(entry, dict):
                continue
            source = str(entry.get("sourceOperationId", ""))
            target = str(entry.get("targetOperationId", ""))
            if source in by_id and target in by_id and source != target:
                dependencies.append(OperationDependency(
                    source_operation_id=source,
                    target_operation_id=target,
                    data_flow=str(entry.get("dataFlow", "")),
                ))

        title = data.get("title") if isinstance(data.get("title"), str) else None
        reasoning = data.get("reasoning") if isinstance(data.get("reasoning"), str) else ""
        return TestPlan(
            title=title or f"{spec.title} Test Plan",
            base_url=spec.base_url,
            items=items,
            dependencies=dependencies,
            reasoning=reasoning.strip(),
        )

    def _item_from_llm(self, entry: Dict[str, Any], op: Operation) -> TestPlanItem:
        expected = entry.get("expectedStatus")
        try:
            expected = int(expected)
        except (TypeError, ValueError):
            expected = op.success_status
        if not is_success_status(expected):
            # The LLM only authors happy paths here
            expected = op.success_status

        body = entry.get("suggestedBody")
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
        elif not isinstance(body, str) or not body.strip():
            body = None

        needs_body = entry.get("needsBody")
        if not isinstance(needs_body, bool):
            needs_body = op.accepts_body

        return TestPlanItem(
            operation_id=op.operation_id,
            method=op.upper_method,
            path=op.path,
            description=str(entry.get("testDescription") or entry.get("description") or op.summary or ""),
            category=TestCategory.POSITIVE,
            expected_status=expected,
            depends_on=_as_str_list(entry.get("dependsOn")),
            assertions=_as_str_list(entry.get("assertions")) or [f"status {expected}"],
            needs_body=needs_body,
            suggested_body=body,
        )

    def _minimal_positive(self, op: Operation) -> TestPlanItem:
        return TestPlanItem(
            operation_id=op.operation_id,
            method=op.upper_method,
            path=op.path,
            description=op.summary or f"{op.upper_method} {op.path} succeeds",
            category=TestCategory.POSITIVE,
            expected_status=op.success_status,
            assertions=[f"status {op.success_status}"],
            needs_body=op.accepts_body,
        )

    def fallback_plan(self, spec: NormalizedSpec, operations: List[Operation]) -> TestPlan:
        """One minimal positive test per operation; marked degraded."""
        return TestPlan(
            title=f"{spec.title} Test Plan (fallback)",
            base_url=spec.base_url,
            items=[self._minimal_positive(op) for op in operations],
            reasoning=(
                "[degraded] The LLM plan could not be parsed; using one minimal "
                "positive test per operation."
            ),
            degraded=True,
        )

    # ═══════════════════════════════════════════════════════════════════════
    # DETERMINISTIC GENERATION
    # ═══════════════════════════════════════════════════════════════════════

    @staticmethod
    def _generated(
        op: Operation,
        suffix: str,
        category: TestCategory,
        path: str,
        expected: int,
        description: str,
        body: Optional[str] = None,
    ) -> TestPlanItem:
        return TestPlanItem(
            operation_id=f"{op.operation_id}_{suffix}",
            method=op.upper_method,
            path=path,
            description=description,
            category=category,
            expected_status=expected,
            assertions=[f"status {expected}"],
            needs_body=body is not None or (op.accepts_body and category == TestCategory.NEGATIVE),
            suggested_body=body,
        )

    @classmethod
    def generate_negative_tests(cls, operations: List[Operation]) -> List[TestPlanItem]:
        """
        Per operation:
        - path params             -> nonexistent id (404), malformed id (400)
        - body-accepting          -> empty body (400)
        - body schema with types  -> type-mismatched payload (400)
        """
        items: List[TestPlanItem] = []
        for op in operations:
            if op.has_path_params:
                items.append(cls._generated(
                    op, "nonExistentId", TestCategory.NEGATIVE,
                    op.resolve_path(NONEXISTENT_ID), 404,
                    f"{op.upper_method} {op.path} with a nonexistent identifier returns 404",
                ))
            if op.accepts_body:
                items.append(cls._generated(
                    op, "emptyBody", TestCategory.NEGATIVE,
                    op.resolve_path(1), 400,
                    f"{op.upper_method} {op.path} with an empty body returns 400",
                    body="{}",
                ))
                typed = op.body_properties
                if typed:
                    payload = {
                        name: TYPE_MISMATCH_VALUES.get(prop["type"], 12345)
                        for name, prop in typed.items()
                    }
                    items.append(cls._generated(
                        op, "invalidTypes", TestCategory.NEGATIVE,
                        op.resolve_path(1), 400,
                        f"{op.upper_method} {op.path} with wrongly typed fields returns 400",
                        body=json.dumps(payload, ensure_ascii=False),
                    ))
            if op.has_path_params:
                items.append(cls._generated(
                    op, "invalidIdFormat", TestCategory.NEGATIVE,
                    op.resolve_path(MALFORMED_ID), 400,
                    f"{op.upper_method} {op.path} with a malformed identifier returns 400",
                ))
        return items

    @classmethod
    def generate_edge_case_tests(cls, operations: List[Operation]) -> List[TestPlanItem]:
        """
        Per operation:
        - path params                          -> id=0 (400), id=-1 (400)
        - creation with string body properties -> special-character payload (2xx)
        - list operation                       -> pagination limit=1 (200)
        """
        items: List[TestPlanItem] = []
        for op in operations:
            if op.has_path_params:
                items.append(cls._generated(
                    op, "zeroId", TestCategory.EDGE_CASE, op.resolve_path(0), 400,
                    f"{op.upper_method} {op.path} with boundary identifier 0 is rejected",
                ))
                items.append(cls._generated(
                    op, "negativeId", TestCategory.EDGE_CASE, op.resolve_path(-1), 400,
                    f"{op.upper_method} {op.path} with negative identifier -1 is rejected",
                ))

            if op.is_creation:
                payload, has_strings = cls._special_payload(op)
                if has_strings:
                    items.append(cls._generated(
                        op, "specialChars", TestCategory.EDGE_CASE, op.path, op.success_status,
                        f"{op.upper_method} {op.path} accepts special characters in string fields",
                        body=json.dumps(payload, ensure_ascii=False),
                    ))

            if op.is_list:
                param = op.pagination_param
                items.append(cls._generated(
                    op, "limitParam", TestCategory.EDGE_CASE, f"{op.path}?{param}=1", 200,
                    f"{op.upper_method} {op.path} honours {param}=1",
                ))
        return items

    @staticmethod
    def _special_payload(op: Operation) -> Tuple[Dict[str, Any], bool]:
        payload: Dict[str, Any] = {}
        strings = 0
        for name, prop in op.body_properties.items():
            if prop["type"] == "string":
                payload[name] = SPECIAL_STRINGS[strings % len(SPECIAL_STRINGS)]
                strings += 1
            else:
                payload[name] = VALID_PLACEHOLDERS.get(prop["type"], "x")
        return payload, strings > 0

    # ═══════════════════════════════════════════════════════════════════════
    # MERGE
    # ═══════════════════════════════════════════════════════════════════════

    def merge(
        self,
        llm_plan: TestPlan,
        negatives: List[TestPlanItem],
        edges: List[TestPlanItem],
    ) -> TestPlan:
        """
        positive + negative + edge, in that order.

        Declared dependencies are folded into the target item's dependsOn,
        ids that do not resolve are dropped, positives are put in stable
        topological order, and priorities are renumbered 1..n.
        """
        positives = list(llm_plan.items)
        known = {item.operation_id for item in positives + negatives + edges}

        extra_deps: Dict[str, List[str]] = {}
        for dep in llm_plan.dependencies:
            extra_deps.setdefault(dep.target_operation_id, []).append(dep.source_operation_id)

        resolved: List[TestPlanItem] = []
        for item in positives:
            wanted = list(dict.fromkeys(item.depends_on + extra_deps.get(item.operation_id, [])))
            kept = [d for d in wanted if d in known and d != item.operation_id]
            dropped = [d for d in wanted if d not in kept]
            if dropped:
                log("PLANNER", f"Dropping unresolved dependsOn for {item.operation_id}: {dropped}")
            resolved.append(item.model_copy(update={"depends_on": kept}))

        graph = DependencyGraph(
            [(item.operation_id, index) for index, item in enumerate(resolved)],
            {item.operation_id: item.depends_on for item in resolved},
        )
        if graph.has_cycle():
            log("PLANNER", "⚠️ Dependency cycle detected; cyclic items keep LLM order")
        position = {node: i for i, node in enumerate(graph.topological_order())}
        ordered = sorted(resolved, key=lambda item: position[item.operation_id])

        merged = [
            item.model_copy(update={"priority": index + 1})
            for index, item in enumerate(ordered + negatives + edges)
        ]

        reasoning = llm_plan.reasoning.strip()
        addition = (
            f"Additionally, {len(negatives)} negative tests and {len(edges)} edge-case tests "
            f"were generated deterministically."
        )
        return TestPlan(
            title=llm_plan.title,
            base_url=llm_plan.base_url,
            items=merged,
            dependencies=llm_plan.dependencies,
            reasoning=f"{reasoning} {addition}".strip(),
            degraded=llm_plan.degraded,
        )
