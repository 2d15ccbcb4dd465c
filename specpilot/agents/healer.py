# specpilot/agents/healer.py
"""
SelfHealer - diagnose failing generated tests and patch the test code.

Three layers keep it from "fixing" tests by weakening them:

1. Pre-filter (deterministic). A failing negative/edge test that observed a
   4xx/5xx did what it was written to do: false positive, dropped. One that
   observed a 2xx points at the API under test: flagged, never auto-fixed.
   Both are removed from everything sent to the LLM, including the source
   files (their functions are cut out and put back verbatim afterwards).
2. Prompt constraint. Only genuine failures go to the LLM, with an explicit
   rule against touching expected-failure statuses.
3. Post-filter (deterministic). A returned file that moves an expected-failure
   test into the 2xx range, drops its status assertion, or deletes it is
   rejected and the file stays as it was.

Accepted fixes are written through the TestWriter and compile-checked; a fix
that does not compile is reverted.
"""
import ast
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional, Set, Tuple

from specpilot.core.config import LLMSettings, settings
from specpilot.core.logging import log
from specpilot.lib.file_system import normalize_relative
from specpilot.llm.adapter import LLMGateway
from specpilot.llm.prompts import HEALER_SYSTEM_PROMPT, build_healer_prompt
from specpilot.models import (
    ApplyOutcome,
    ExecutionResult,
    HealReport,
    RejectedFix,
    TestCaseResult,
    TestFix,
    TestPlan,
    TestPlanItem,
    is_error_status,
    is_success_status,
)
from specpilot.utils.parser import parse_json_object

from .executor import is_collection_error
from .writer import TestWriter


RAW_OUTPUT_TAIL = 4000
FAILURE_SOURCES = {"test-code", "api-bug", "environment", "unknown"}


# ═══════════════════════════════════════════════════════════════════════════════
# AST HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _int_constant(node: ast.AST) -> Optional[int]:
    if isinstance(node, ast.Constant) and isinstance(node.value, int) and not isinstance(node.value, bool):
        return node.value
    return None


def _is_status_code(node: ast.AST) -> bool:
    return isinstance(node, ast.Attribute) and node.attr == "status_code"


def _asserted_status(node: ast.AST) -> Optional[int]:
    if isinstance(node, ast.Call):
        func = node.func
        name = func.id if isinstance(func, ast.Name) else getattr(func, "attr", None)
        if name == "assert_status":
            if len(node.args) >= 2 and _int_constant(node.args[1]) is not None:
                return _int_constant(node.args[1])
            for kw in node.keywords:
                if kw.arg == "expected" and _int_constant(kw.value) is not None:
                    return _int_constant(kw.value)
    elif isinstance(node, ast.Compare) and len(node.ops) == 1 and isinstance(node.ops[0], ast.Eq):
        left, right = node.left, node.comparators[0]
        if _is_status_code(left) and _int_constant(right) is not None:
            return _int_constant(right)
        if _is_status_code(right) and _int_constant(left) is not None:
            return _int_constant(left)
    return None


def _statuses_in(function: ast.AST) -> List[int]:
    """Every HTTP status a test function asserts, in source order."""
    found = []
    for node in ast.walk(function):
        status = _asserted_status(node)
        if status is not None:
            found.append((node.lineno, node.col_offset, status))
    return [status for _, _, status in sorted(found)]


def asserted_status_lists(content: str) -> Optional[Dict[str, List[int]]]:
    """
    Test function name -> every asserted HTTP status, in source order.
    None when the content does not parse.
    """
    try:
        tree = ast.parse(content)
    except SyntaxError:
        return None
    return {
        node.name: _statuses_in(node)
        for node in tree.body
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name.startswith("test")
    }


def asserted_statuses(content: str) -> Optional[Dict[str, Optional[int]]]:
    """
    Test function name -> the last HTTP status it asserts (None if it asserts none).
    Setup requests come first, so the last assertion is the one under test.
    """
    lists = asserted_status_lists(content)
    if lists is None:
        return None
    return {name: statuses[-1] if statuses else None for name, statuses in lists.items()}


@dataclass
class _Cut:
    name: str
    source: str
    previous: Optional[str]


def redact_functions(content: str, names: Set[str]) -> Tuple[str, List[_Cut]]:
    """Remove top-level functions in `names`; returns the rest and what was cut."""
    if not names:
        return content, []
    try:
        tree = ast.parse(content)
    except SyntaxError:
        return content, []

    lines = content.splitlines()
    cuts: List[_Cut] = []
    ranges: List[Tuple[int, int]] = []
    previous: Optional[str] = None
    for node in tree.body:
        is_func = isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef))
        if is_func and node.name in names:
            start = min([node.lineno] + [d.lineno for d in node.decorator_list]) - 1
            end = node.end_lineno or node.lineno
            cuts.append(_Cut(node.name, "\n".join(lines[start:end]), previous))
            ranges.append((start, end))
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            previous = node.name

    kept: List[str] = []
    for index, line in enumerate(lines):
        if not any(start <= index < end for start, end in ranges):
            kept.append(line)
    return "\n".join(kept).rstrip() + "\n", cuts


def reinsert_functions(content: str, cuts: List[_Cut]) -> str:
    """Put cut functions back after the definition that preceded them."""
    for cut in cuts:
        lines = content.rstrip("\n").splitlines()
        try:
            tree = ast.parse(content)
        except SyntaxError:
            tree = None

        insert_at = len(lines)
        if tree is not None:
            defs = [n for n in tree.body if isinstance(n, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef))]
            if cut.previous is None and defs:
                first = defs[0]
                insert_at = min([first.lineno] + [d.lineno for d in first.decorator_list]) - 1
            else:
                for node in defs:
                    if node.name == cut.previous:
                        insert_at = node.end_lineno or node.lineno
                        break

        block = ["", "", *cut.source.splitlines(), ""] if insert_at < len(lines) else ["", "", *cut.source.splitlines()]
        content = "\n".join(lines[:insert_at] + block + lines[insert_at:]).rstrip() + "\n"
    return content


def _safe_relative(path: str) -> Optional[str]:
    rel = normalize_relative(path.strip())
    if rel:
        rel = str(PurePosixPath(rel))
    if not rel or rel == "." or ".." in Path(rel).parts or ":" in rel:
        return None
    return rel


# ═══════════════════════════════════════════════════════════════════════════════
# HEALER
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class Triage:
    genuine: List[TestCaseResult] = field(default_factory=list)
    false_positives: List[TestCaseResult] = field(default_factory=list)
    api_defects: List[TestCaseResult] = field(default_factory=list)

    @property
    def excluded_names(self) -> Set[str]:
        return {c.name.split("[", 1)[0] for c in self.false_positives + self.api_defects}


class SelfHealer:
    """Turns a failing ExecutionResult into screened whole-file fixes."""

    def __init__(
        self,
        gateway: LLMGateway,
        writer: TestWriter,
        executor,
        config: Optional[LLMSettings] = None,
    ):
        self.gateway = gateway
        self.writer = writer
        self.executor = executor
        self.config = config or settings.llm

    # ───────────────────────────────────────────────────────────────────────
    # Layer 1: pre-filter
    # ───────────────────────────────────────────────────────────────────────

    def triage(self, result: ExecutionResult, plan: TestPlan) -> Triage:
        triage = Triage()
        for case in result.failures():
            item = plan.item_by_test_name(case.name)
            # A failed setup assertion never reached the status under test
            own_check = item is not None and case.expected_status in (None, item.expected_status)
            if own_check and item.is_expected_failure and case.observed_status is not None:
                if is_error_status(case.observed_status):
                    triage.false_positives.append(case)
                    continue
                if is_success_status(case.observed_status):
                    triage.api_defects.append(case)
                    continue
            triage.genuine.append(case)
        return triage

    # ───────────────────────────────────────────────────────────────────────
    # Layer 2: prompt
    # ───────────────────────────────────────────────────────────────────────

    @staticmethod
    def resolve_file(case: TestCaseResult, files: Dict[str, str]) -> Optional[str]:
        if case.file and case.file in files:
            return case.file
        dotted = (case.classname or case.name).split(".")
        for size in range(len(dotted), 0, -1):
            candidate = "/".join(dotted[:size]) + ".py"
            if candidate in files:
                return candidate
        return None

    def relevant_files(self, genuine: List[TestCaseResult], files: Dict[str, str]) -> Dict[str, str]:
        paths = []
        for case in genuine:
            path = self.resolve_file(case, files)
            if path and path not in paths:
                paths.append(path)
        if not paths:
            paths = [p for p in files if Path(p).name.startswith("test_")]
        return {p: files[p] for p in sorted(paths)}

    @staticmethod
    def _without_excluded(text: str, excluded: Iterable[str]) -> str:
        excluded = list(excluded)
        if not excluded:
            return text
        return "\n".join(
            line for line in text.splitlines()
            if not any(name in line for name in excluded)
        )

    def build_prompt(
        self,
        triage: Triage,
        result: ExecutionResult,
        sources: Dict[str, str],
        plan: TestPlan,
        iteration: int,
    ) -> str:
        details = []
        for case in triage.genuine:
            location = case.file or case.classname or "?"
            message = case.message or "(no message)"
            details.append(f"### {case.name} [{case.status.value}] ({location})\n{message}")

        relevant = "\n\n".join(f"--- {path} ---\n{content}" for path, content in sources.items())

        protected: List[str] = []
        statuses: Dict[str, Optional[int]] = {}
        for content in sources.values():
            statuses.update(asserted_statuses(content) or {})
        for item in plan.items:
            if item.is_expected_failure and item.test_name in statuses:
                protected.append(f"- {item.test_name}: must keep expecting {item.expected_status}")

        raw_tail = self._without_excluded(result.raw_output, triage.excluded_names)[-RAW_OUTPUT_TAIL:]

        return build_healer_prompt(
            iteration=iteration,
            failure_details="\n\n".join(details),
            raw_output_tail=raw_tail,
            relevant_files=relevant,
            protected_tests="\n".join(protected),
            has_collection_errors=any(is_collection_error(c) for c in triage.genuine),
        )

    @staticmethod
    def parse_fixes(raw: str) -> Optional[Tuple[str, str, List[TestFix]]]:
        """(failureSource, summary, fixes) from the LLM answer, None if unusable."""
        data = parse_json_object(raw)
        if data is None:
            return None
        source = data.get("failureSource") if data.get("failureSource") in FAILURE_SOURCES else "unknown"
        summary = data.get("summary") if isinstance(data.get("summary"), str) else ""
        fixes: List[TestFix] = []
        for entry in data.get("fixes") or []:
            if not isinstance(entry, dict):
                continue
            path = entry.get("filePath")
            content = entry.get("content", entry.get("newContent"))
            if not isinstance(path, str) or not isinstance(content, str) or not content.strip():
                continue
            rationale = entry.get("rationale", entry.get("explanation", ""))
            fixes.append(TestFix(file_path=path, content=content, rationale=str(rationale or "")))
        return source, summary, fixes

    # ───────────────────────────────────────────────────────────────────────
    # Layer 3: post-filter
    # ───────────────────────────────────────────────────────────────────────

    def screen_fixes(
        self,
        fixes: List[TestFix],
        files: Dict[str, str],
        plan: TestPlan,
    ) -> Tuple[List[TestFix], List[RejectedFix]]:
        accepted: List[TestFix] = []
        rejected: List[RejectedFix] = []
        guarded: Dict[str, TestPlanItem] = {
            item.test_name: item for item in plan.items if item.is_expected_failure
        }

        for fix in fixes:
            rel = _safe_relative(fix.file_path)
            if rel is None or not rel.endswith(".py"):
                rejected.append(RejectedFix(file_path=fix.file_path, reason="path outside the generated project"))
                continue

            before = asserted_status_lists(files.get(rel, "")) or {}
            after = asserted_status_lists(fix.content)
            violation = None
            if after is not None:
                for name, item in guarded.items():
                    if name not in before:
                        continue
                    old, new = before[name], after.get(name)
                    reason = None
                    if new is None:
                        reason = f"removes expected-failure test {name}"
                    elif old and not new:
                        reason = f"drops the status assertion of {name}"
                    elif old and new and is_error_status(old[-1]) and is_success_status(new[-1]):
                        reason = f"changes {name} from {old[-1]} to {new[-1]}"
                    elif item.expected_status in old and item.expected_status not in new:
                        reason = f"no longer asserts {item.expected_status} in {name}"
                    if reason:
                        violation = RejectedFix(file_path=rel, test_name=name, reason=reason)
                        break

            if violation:
                rejected.append(violation)
            else:
                accepted.append(fix.model_copy(update={"file_path": rel}))
        return accepted, rejected

    # ───────────────────────────────────────────────────────────────────────
    # Entry points
    # ───────────────────────────────────────────────────────────────────────

    async def diagnose(
        self,
        result: ExecutionResult,
        files: Dict[str, str],
        plan: TestPlan,
        iteration: int = 0,
        run_id: Optional[str] = None,
    ) -> HealReport:
        triage = self.triage(result, plan)
        report = HealReport(
            genuine_failures=[c.name for c in triage.genuine],
            false_positives=[c.name for c in triage.false_positives],
            api_defects=[c.name for c in triage.api_defects],
        )
        for case in triage.false_positives:
            log("HEALER", f"Ignoring {case.name}: observed {case.observed_status}, an expected failure", run_id=run_id)
        for case in triage.api_defects:
            log("HEALER", f"🐞 Likely API defect: {case.name} expected an error but got {case.observed_status}", run_id=run_id)

        if not triage.genuine:
            report.failure_source = "api-bug" if triage.api_defects else "unknown"
            report.summary = "No genuine test-code failures to fix."
            return report

        relevant = self.relevant_files(triage.genuine, files)
        sources: Dict[str, str] = {}
        cuts: Dict[str, list] = {}
        for path, content in relevant.items():
            sources[path], cuts[path] = redact_functions(content, triage.excluded_names)

        prompt = self.build_prompt(triage, result, sources, plan, iteration)
        log("HEALER", f"🩺 Asking for fixes to {len(triage.genuine)} failures in {len(sources)} files", run_id=run_id)
        llm = await self.gateway.complete(
            HEALER_SYSTEM_PROMPT,
            prompt,
            temperature=self.config.healer_temperature,
            max_tokens=self.config.healer_max_tokens,
        )
        raw = llm.unwrap()
        report.llm_called = True

        parsed = self.parse_fixes(raw)
        if parsed is None:
            log("HEALER", "⚠️ Could not parse the fix response", run_id=run_id)
            report.summary = "Fix response could not be parsed."
            return report

        report.failure_source, report.summary, fixes = parsed
        restored = []
        for fix in fixes:
            rel = _safe_relative(fix.file_path)
            if rel in cuts and cuts[rel]:
                fix = fix.model_copy(update={"content": reinsert_functions(fix.content, cuts[rel])})
            restored.append(fix)

        report.fixes, report.rejected = self.screen_fixes(restored, files, plan)
        for rejected in report.rejected:
            log("HEALER", f"🛑 Rejected fix for {rejected.file_path}: {rejected.reason}", run_id=run_id)
        log("HEALER", f"Accepted {len(report.fixes)} fixes, rejected {len(report.rejected)}", run_id=run_id)
        return report

    async def reflect(
        self,
        result: ExecutionResult,
        files: Dict[str, str],
        plan: TestPlan,
        iteration: int = 0,
    ) -> List[TestFix]:
        return (await self.diagnose(result, files, plan, iteration)).fixes

    async def apply(self, project_path: Path, fixes: List[TestFix], run_id: Optional[str] = None) -> ApplyOutcome:
        """Persist fixes via the writer, compile-check them, revert the broken ones."""
        backup = await self.writer.apply_fixes(project_path, fixes)
        errors = await self.executor.compile_check(project_path, list(backup))

        if errors:
            for path, output in errors.items():
                log("HEALER", f"↩️ Fix for {path} does not compile, reverting: {output.strip()[:200]}", run_id=run_id)
            await self.writer.restore(project_path, {p: backup[p] for p in errors})

        applied = [f for f in fixes if normalize_relative(f.file_path) not in errors]
        reverted = [f for f in fixes if normalize_relative(f.file_path) in errors]
        return ApplyOutcome(
            applied=applied,
            reverted=reverted,
            backup={p: c for p, c in backup.items() if p not in errors},
        )
