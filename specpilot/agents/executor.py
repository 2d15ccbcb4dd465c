# specpilot/agents/executor.py
"""
Executor - runs the generated suite with pytest and parses what happened.

The exit code alone decides nothing. A run counts as executed when a summary
can be parsed and at least one test actually ran; failing tests are then
data. No parseable summary, only collection errors, or a timeout means the
suite could not execute at all: InfrastructureFailureError.
"""
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from xml.etree import ElementTree

from specpilot.core.config import ExecutorSettings, settings
from specpilot.core.exceptions import InfrastructureFailureError
from specpilot.core.logging import log
from specpilot.lib.file_system import FileStore
from specpilot.lib.process import ProcessRunner
from specpilot.models import ExecutionResult, TestCaseResult, TestStatus


JUNIT_PATH = ".reports/junit.xml"
MAX_MESSAGE = 2000
MAX_RAW_OUTPUT = 20000

# "expected status 404 but was 200", "Expected status code <400> but was <201>"
STATUS_MISMATCH_RE = re.compile(
    r"expected\s+(?:status\s+(?:code\s+)?)?<?(\d{3})>?\s+but\s+was\s+<?(\d{3})>?",
    re.IGNORECASE,
)
# pytest assertion rewrite of `assert response.status_code == 201`: "assert 404 == 201"
ASSERT_EQ_RE = re.compile(r"assert\s+(\d{3})\s+==\s+(\d{3})\b")
RESPONSE_REPR_RE = re.compile(r"<Response \[(\d{3})")

SUMMARY_RE = re.compile(r"^=*\s*((?:\d+\s+[a-z]+(?:,\s*)?)+)\s+in\s+[\d.]+s", re.MULTILINE)
SUMMARY_PART_RE = re.compile(r"(\d+)\s+([a-z]+)")
SHORT_SUMMARY_RE = re.compile(r"^(FAILED|ERROR)\s+(\S+?)(?:::(\S+))?(?:\s+-\s+(.*))?$", re.MULTILINE)


def extract_statuses(message: str) -> Tuple[Optional[int], Optional[int]]:
    """(observed, expected) HTTP status from an assertion message."""
    match = STATUS_MISMATCH_RE.search(message)
    if match:
        return int(match.group(2)), int(match.group(1))
    match = ASSERT_EQ_RE.search(message)
    if match:
        return int(match.group(1)), int(match.group(2))
    match = RESPONSE_REPR_RE.search(message)
    if match:
        return int(match.group(1)), None
    return None, None


def _module_file(dotted: str) -> str:
    return dotted.replace(".", "/") + ".py"


def _case(name: str, classname: str, status: TestStatus, message: str = "",
          file: Optional[str] = None, duration: float = 0.0) -> TestCaseResult:
    observed, expected = extract_statuses(message) if message else (None, None)
    return TestCaseResult(
        name=name,
        classname=classname,
        file=file,
        status=status,
        message=message[:MAX_MESSAGE],
        observed_status=observed,
        expected_status=expected,
        duration_seconds=duration,
    )


def is_collection_error(case: TestCaseResult) -> bool:
    """pytest reports an uncollectable module as a nameless-class error."""
    return case.status == TestStatus.ERROR and not case.classname


# ═══════════════════════════════════════════════════════════════════════════════
# PARSERS
# ═══════════════════════════════════════════════════════════════════════════════

def parse_junit(xml_text: str) -> Optional[List[TestCaseResult]]:
    """Per-test results from a pytest JUnit XML report, None if unreadable."""
    try:
        root = ElementTree.fromstring(xml_text)
    except ElementTree.ParseError:
        return None

    cases: List[TestCaseResult] = []
    for node in root.iter("testcase"):
        name = node.get("name", "")
        classname = node.get("classname", "")
        try:
            duration = float(node.get("time", "0") or 0)
        except ValueError:
            duration = 0.0

        status = TestStatus.PASSED
        message = ""
        for tag, tag_status in (("failure", TestStatus.FAILED), ("error", TestStatus.ERROR), ("skipped", TestStatus.SKIPPED)):
            child = node.find(tag)
            if child is not None:
                status = tag_status
                message = "\n".join(p for p in (child.get("message", ""), (child.text or "").strip()) if p)
                break

        if classname:
            file = node.get("file") or _module_file(classname)
        else:
            # Collection errors carry the module in `name`
            file = _module_file(name)
        cases.append(_case(name, classname, status, message, file, duration))
    return cases


def parse_summary_counts(output: str) -> Optional[Dict[str, int]]:
    """Counts from the final pytest summary line ("1 failed, 2 passed in 0.3s")."""
    matches = SUMMARY_RE.findall(output)
    if not matches:
        return None
    counts: Dict[str, int] = {}
    for number, word in SUMMARY_PART_RE.findall(matches[-1]):
        key = {"errors": "error", "warnings": "warning"}.get(word, word)
        counts[key] = counts.get(key, 0) + int(number)
    return counts


def parse_short_summary(output: str) -> List[TestCaseResult]:
    """FAILED/ERROR lines of the `-rfE` short test summary."""
    cases: List[TestCaseResult] = []
    for kind, path, name, message in SHORT_SUMMARY_RE.findall(output):
        status = TestStatus.FAILED if kind == "FAILED" else TestStatus.ERROR
        if name:
            test_name = name
            classname = path[:-3].replace("/", ".") if path.endswith(".py") else path
        else:
            # Module-level error: collection failure
            test_name = path[:-3].replace("/", ".") if path.endswith(".py") else path
            classname = ""
        cases.append(_case(test_name, classname, status, message or "", path if path.endswith(".py") else None))
    return cases


# ═══════════════════════════════════════════════════════════════════════════════
# EXECUTOR
# ═══════════════════════════════════════════════════════════════════════════════

class Executor:
    """Runs pytest in a child process and builds an ExecutionResult."""

    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        file_store: Optional[FileStore] = None,
        reporter=None,
        config: Optional[ExecutorSettings] = None,
    ):
        self.runner = runner or ProcessRunner()
        self.file_store = file_store or FileStore()
        self.reporter = reporter
        self.config = config or settings.executor

    def command(self) -> List[str]:
        return [
            self.config.python_executable, "-m", "pytest",
            "-q", "-rfEs",
            f"--junitxml={JUNIT_PATH}",
            "-p", "no:cacheprovider",
            "--continue-on-collection-errors",
        ]

    def environment(self) -> Dict[str, str]:
        env = {"PYTHONDONTWRITEBYTECODE": "1"}
        if self.config.api_base_url:
            env["API_BASE_URL"] = self.config.api_base_url
        return env

    async def execute(self, project_path: Path, run_id: Optional[str] = None) -> ExecutionResult:
        await self.file_store.delete_file(project_path, JUNIT_PATH)

        log("EXECUTOR", f"🧪 Running pytest in {project_path}", run_id=run_id)
        proc = await self.runner.run(
            self.command(),
            cwd=project_path,
            env=self.environment(),
            timeout=self.config.test_timeout,
        )
        output = proc.output

        if proc.timed_out:
            raise InfrastructureFailureError(
                f"pytest timed out after {self.config.test_timeout:g}s",
                output=output[-MAX_RAW_OUTPUT:],
                exit_code=proc.exit_code,
            )

        result = await self._parse(project_path, output, proc.exit_code, proc.duration_seconds)
        if result is None:
            raise InfrastructureFailureError(
                f"pytest could not execute the suite (exit code {proc.exit_code})",
                output=output[-MAX_RAW_OUTPUT:],
                exit_code=proc.exit_code,
            )

        log(
            "EXECUTOR",
            f"📊 {result.passed} passed, {result.failed} failed, {result.skipped} skipped "
            f"(total {result.total}, exit code {proc.exit_code})",
            run_id=run_id,
        )
        await self._report(project_path, result, run_id)
        return result

    async def _parse(
        self,
        project_path: Path,
        output: str,
        exit_code: int,
        duration: float,
    ) -> Optional[ExecutionResult]:
        xml_text = await self.file_store.read_file(project_path, JUNIT_PATH)
        cases = parse_junit(xml_text) if xml_text else None

        if cases is None:
            counts = parse_summary_counts(output)
            if counts is None:
                return None
            cases = parse_short_summary(output)
            executed = counts.get("passed", 0) + counts.get("failed", 0) + counts.get("skipped", 0)
            executed += sum(1 for c in cases if c.status == TestStatus.ERROR and not is_collection_error(c))
            if executed == 0:
                return None
            failed = counts.get("failed", 0) + counts.get("error", 0)
            passed = counts.get("passed", 0)
            skipped = counts.get("skipped", 0)
            total = passed + failed + skipped
        else:
            executed = sum(1 for c in cases if not is_collection_error(c))
            if executed == 0:
                return None
            passed = sum(1 for c in cases if c.status == TestStatus.PASSED)
            skipped = sum(1 for c in cases if c.status == TestStatus.SKIPPED)
            failed = sum(1 for c in cases if c.is_failure)
            total = len(cases)

        return ExecutionResult(
            total=total,
            passed=passed,
            failed=failed,
            skipped=skipped,
            tests=cases,
            raw_output=output[-MAX_RAW_OUTPUT:],
            exit_code=exit_code,
            duration_seconds=duration,
        )

    async def _report(self, project_path: Path, result: ExecutionResult, run_id: Optional[str]) -> None:
        """Best-effort report; its failure never affects the run."""
        if self.reporter is None or not self.config.report_enabled:
            return
        try:
            await self.reporter.generate(project_path, result)
        except Exception as e:
            log("EXECUTOR", f"⚠️ Report generation failed (ignored): {e}", run_id=run_id)

    async def compile_check(self, project_path: Path, paths: List[str]) -> Dict[str, str]:
        """
        Compile-only verification of changed files.
        Returns {path: error output} for every file that failed.
        """
        errors: Dict[str, str] = {}
        for rel in paths:
            if not rel.endswith(".py"):
                continue
            proc = await self.runner.run(
                [self.config.python_executable, "-m", "py_compile", rel],
                cwd=project_path,
                timeout=self.config.compile_timeout,
            )
            if proc.timed_out or proc.exit_code != 0:
                errors[rel] = proc.output or f"py_compile exit code {proc.exit_code}"
        return errors
