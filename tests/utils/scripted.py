# tests/utils/scripted.py
"""
Scripted collaborators for pipeline tests.

- ScriptedLLM: a provider function plugged into the real LLMGateway that
  answers from a queue and records every prompt.
- ScriptedRunner: a ProcessRunner stand-in; pytest invocations are answered
  by a handler that writes JUnit XML, py_compile invocations compile the file
  in-process.
"""
import json
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from xml.sax.saxutils import quoteattr

from specpilot.lib.process import ProcessResult
from specpilot.llm.adapter import LLMGateway, ProviderError


class ScriptedLLM:
    """Queue of canned answers. An Exception in the queue is raised instead."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts: List[str] = []
        self.system_prompts: List[str] = []

    def queue(self, *responses) -> None:
        self.responses.extend(responses)

    async def call(self, prompt, system_prompt, model, temperature, max_tokens, config):
        self.prompts.append(prompt)
        self.system_prompts.append(system_prompt)
        if not self.responses:
            raise ProviderError("script exhausted")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(prompt)
        return response

    def gateway(self, config=None) -> LLMGateway:
        return LLMGateway(provider="scripted", model="scripted-1", config=config,
                          providers={"scripted": self.call})

    @property
    def calls(self) -> int:
        return len(self.prompts)


# ═══════════════════════════════════════════════════════
# JUNIT / PYTEST OUTPUT
# ═══════════════════════════════════════════════════════

# (classname, name, outcome, message); outcome in passed|failed|error|skipped
Case = Tuple[str, str, str, str]


def junit_xml(cases: Sequence[Case]) -> str:
    failures = sum(1 for c in cases if c[2] == "failed")
    errors = sum(1 for c in cases if c[2] == "error")
    skipped = sum(1 for c in cases if c[2] == "skipped")
    body = []
    for classname, name, outcome, message in cases:
        attrs = f"classname={quoteattr(classname)} name={quoteattr(name)} time=\"0.010\""
        if outcome == "passed":
            body.append(f"<testcase {attrs} />")
        elif outcome == "failed":
            body.append(f"<testcase {attrs}><failure message={quoteattr(message)}>AssertionError</failure></testcase>")
        elif outcome == "error":
            body.append(f"<testcase {attrs}><error message={quoteattr(message)}>collection failure</error></testcase>")
        else:
            body.append(f"<testcase {attrs}><skipped message={quoteattr(message)} /></testcase>")
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        f'<testsuites><testsuite name="pytest" errors="{errors}" failures="{failures}" '
        f'skipped="{skipped}" tests="{len(cases)}" time="0.1">'
        + "".join(body)
        + "</testsuite></testsuites>"
    )


def pytest_output(cases: Sequence[Case]) -> str:
    lines = []
    for classname, name, outcome, message in cases:
        path = classname.replace(".", "/") + ".py"
        if outcome == "failed":
            lines.append(f"FAILED {path}::{name} - {message}")
    passed = sum(1 for c in cases if c[2] == "passed")
    failed = sum(1 for c in cases if c[2] == "failed")
    parts = []
    if failed:
        parts.append(f"{failed} failed")
    if passed:
        parts.append(f"{passed} passed")
    lines.append(f"{', '.join(parts) or 'no tests ran'} in 0.42s")
    return "\n".join(lines)


def pytest_run(cases: Sequence[Case]) -> Callable[[Path], ProcessResult]:
    """Handler step: write the JUnit report and return matching pytest output."""
    def step(cwd: Path) -> ProcessResult:
        report = cwd / ".reports" / "junit.xml"
        report.parent.mkdir(parents=True, exist_ok=True)
        report.write_text(junit_xml(cases), encoding="utf-8")
        failed = any(c[2] in ("failed", "error") for c in cases)
        return ProcessResult(stdout=pytest_output(cases), stderr="", exit_code=1 if failed else 0)
    return step


def pytest_crash(message: str = "ImportError while loading conftest") -> Callable[[Path], ProcessResult]:
    """Handler step: pytest dies before running anything."""
    def step(cwd: Path) -> ProcessResult:
        return ProcessResult(stdout="", stderr=message, exit_code=4)
    return step


class ScriptedRunner:
    """
    ProcessRunner stand-in. Each pytest invocation consumes the next step;
    py_compile invocations compile the target file with compile().
    """

    def __init__(self, *steps, on_pytest: Optional[Callable[[], None]] = None):
        self.steps = list(steps)
        self.commands: List[List[str]] = []
        self.on_pytest = on_pytest

    def queue(self, *steps) -> None:
        self.steps.extend(steps)

    @property
    def pytest_calls(self) -> int:
        return sum(1 for c in self.commands if "pytest" in c)

    async def run(self, command, cwd, env=None, timeout=120) -> ProcessResult:
        self.commands.append(list(command))
        cwd = Path(cwd)
        if "py_compile" in command:
            target = cwd / command[-1]
            try:
                compile(target.read_text(encoding="utf-8"), command[-1], "exec")
            except SyntaxError as e:
                return ProcessResult(stdout="", stderr=f"SyntaxError: {e}", exit_code=1)
            return ProcessResult(stdout="", stderr="", exit_code=0)

        if self.on_pytest is not None:
            self.on_pytest()
        if not self.steps:
            return ProcessResult(stdout="", stderr="no scripted pytest step left", exit_code=3)
        return self.steps.pop(0)(cwd)


# ═══════════════════════════════════════════════════════
# GENERATED TEST CODE
# ═══════════════════════════════════════════════════════

def generated_module(expected: Dict[str, int], package: str = "api_tests") -> str:
    """A generated module: one function per name asserting its expected status."""
    lines = [f"from {package}.support import assert_status", ""]
    for name, status in expected.items():
        lines.extend([
            "",
            f"def {name}(client, shared):",
            '    response = client.get("/items/1")',
            f"    assert_status(response, {status})",
        ])
    return "\n".join(lines) + "\n"


def fenced(code: str) -> str:
    return f"```python\n{code}```"


def heal_response(fixes: Dict[str, str], source: str = "test-code", summary: str = "fixed") -> str:
    return json.dumps({
        "failureSource": source,
        "summary": summary,
        "shouldRetry": True,
        "fixes": [
            {"filePath": path, "content": content, "rationale": "align request with spec"}
            for path, content in fixes.items()
        ],
    })
