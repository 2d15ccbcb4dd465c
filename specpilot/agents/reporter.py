# specpilot/agents/reporter.py
"""
Reporter - writes a human-readable summary of one execution.

Best-effort only: the Executor logs and ignores any exception raised here.
"""
from pathlib import Path
from typing import Optional

from specpilot.core.logging import log
from specpilot.lib.file_system import FileStore
from specpilot.models import ExecutionResult, TestStatus


REPORT_PATH = ".reports/summary.md"

STATUS_ICONS = {
    TestStatus.PASSED: "✅",
    TestStatus.FAILED: "❌",
    TestStatus.ERROR: "💥",
    TestStatus.SKIPPED: "⏭️",
}


class MarkdownReporter:
    """Renders ExecutionResult as Markdown under .reports/."""

    def __init__(self, file_store: Optional[FileStore] = None):
        self.file_store = file_store or FileStore()

    def render(self, result: ExecutionResult) -> str:
        lines = [
            "# Test Report",
            "",
            f"- Total: {result.total}",
            f"- Passed: {result.passed}",
            f"- Failed: {result.failed}",
            f"- Skipped: {result.skipped}",
            f"- Duration: {result.duration_seconds:.2f}s",
            "",
            "| | Test | Module | Observed | Message |",
            "|---|---|---|---|---|",
        ]
        for case in result.tests:
            message = case.message.splitlines()[0][:120] if case.message else ""
            message = message.replace("|", "\\|")
            observed = case.observed_status if case.observed_status is not None else ""
            lines.append(
                f"| {STATUS_ICONS[case.status]} | `{case.name}` | {case.file or case.classname} | {observed} | {message} |"
            )
        return "\n".join(lines) + "\n"

    async def generate(self, project_path: Path, result: ExecutionResult) -> str:
        await self.file_store.write_file(project_path, REPORT_PATH, self.render(result))
        log("REPORTER", f"📝 Report written to {project_path / REPORT_PATH}")
        return REPORT_PATH
