# specpilot/agents/writer.py
"""
TestWriter - TestPlan -> runnable pytest + httpx project on disk.

Layout of a generated suite:

    <project>/
      pyproject.toml           build manifest + pytest configuration
      README.md                strategy, counts, dependency chains
      .specpilot-suite         ownership marker
      <base_package>/
        __init__.py
        conftest.py            base URL, `client` and `shared` fixtures
        support.py             assert_status() and random-data helpers
        test_<resource>.py     LLM-written tests, one module per chunk

The scaffold is rendered from fixed templates; only the test modules come
from the LLM. Writing is idempotent-by-overwrite: the managed tree is cleared
first and nothing time-dependent is emitted.
"""
import ast
import json
import re
from pathlib import Path
from string import Template
from typing import Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from specpilot.core.config import LLMSettings, settings
from specpilot.core.exceptions import WriteFailureError
from specpilot.core.logging import log
from specpilot.lib.file_system import FileStore, GeneratedFile, normalize_relative, sanitize_name
from specpilot.llm.adapter import LLMGateway
from specpilot.llm.prompts import WRITER_SYSTEM_PROMPT, build_writer_prompt
from specpilot.models import TestCategory, TestFix, TestPlan, TestPlanItem
from specpilot.orchestration.task_graph import DependencyGraph
from specpilot.utils.parser import extract_python_code


SUITE_MARKER = ".specpilot-suite"

CHARS_PER_TOKEN = 4
# Share of the context window the prompt may take; the rest is left for the answer
INPUT_SHARE = 0.5
MIN_CHUNK_CHARS = 2000

SUPPORT_HELPERS = {"assert_status", "random_string", "random_int", "random_float", "random_email", "random_bool"}
STDLIB_MODULES = {"json", "uuid", "random", "datetime", "time", "re", "string"}


class GeneratedSuite(BaseModel):
    project_path: str
    base_package: str
    files: List[str] = Field(default_factory=list)
    # module path -> test function names, in plan order
    modules: Dict[str, List[str]] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════════════════
# SCAFFOLD TEMPLATES
# ═══════════════════════════════════════════════════════════════════════════════

PYPROJECT_TEMPLATE = Template('''[project]
name = "$name"
version = "0.1.0"
description = "Generated API tests for $title"
requires-python = ">=3.9"
dependencies = [
    "pytest>=7.4",
    "httpx>=0.25",
]

[tool.pytest.ini_options]
testpaths = ["$package"]
junit_family = "xunit2"
''')

CONFTEST_TEMPLATE = Template('''"""Shared configuration for the generated API tests."""
import os

import httpx
import pytest

BASE_URL = os.environ.get("API_BASE_URL", $base_url)
TIMEOUT = float(os.environ.get("API_TIMEOUT", "30"))


@pytest.fixture(scope="session")
def base_url():
    return BASE_URL


@pytest.fixture(scope="session")
def client():
    with httpx.Client(base_url=BASE_URL, timeout=TIMEOUT, headers={"Accept": "application/json"}) as session:
        yield session


@pytest.fixture(scope="session")
def shared():
    """Values handed from producer tests to the tests that depend on them."""
    return {}
''')

SUPPORT_SOURCE = '''"""Assertion and test-data helpers shared by the generated tests."""
import random
import uuid


def assert_status(response, expected):
    actual = response.status_code
    assert actual == expected, (
        f"expected status {expected} but was {actual}: "
        f"{response.request.method} {response.request.url} -> {response.text[:300]}"
    )


def random_string(prefix="test"):
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def random_int(low=1, high=100000):
    return random.randint(low, high)


def random_float(low=1.0, high=1000.0):
    return round(random.uniform(low, high), 2)


def random_email():
    return f"user-{uuid.uuid4().hex[:8]}@example.com"


def random_bool():
    return random.choice([True, False])
'''


def module_name_for(resource: str) -> str:
    name = re.sub(r"[^0-9a-zA-Z]+", "_", resource).strip("_").lower()
    return f"test_{name or 'root'}"


# ═══════════════════════════════════════════════════════════════════════════════
# IMPORT FIXER
# ═══════════════════════════════════════════════════════════════════════════════

def fix_imports(code: str, base_package: str) -> str:
    """
    Add imports the LLM forgot: pytest, support helpers, common stdlib modules.

    Code that does not parse is returned unchanged; the executor reports it as
    a collection error and the self-healer deals with it.
    """
    try:
        tree = ast.parse(code)
    except SyntaxError:
        return code

    bound: Set[str] = set()
    used: Set[str] = set()
    future_end = 0
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            bound.update((a.asname or a.name).split(".")[0] for a in node.names)
        elif isinstance(node, ast.ImportFrom):
            bound.update(a.asname or a.name for a in node.names)
            if node.module == "__future__":
                future_end = max(future_end, node.end_lineno or node.lineno)
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            bound.add(node.name)
        elif isinstance(node, ast.Name):
            if isinstance(node.ctx, ast.Load):
                used.add(node.id)
            else:
                bound.add(node.id)

    missing = used - bound
    lines: List[str] = []
    for module in sorted(missing & STDLIB_MODULES):
        lines.append(f"import {module}")
    if "pytest" in missing:
        lines.append("import pytest")
    helpers = sorted(missing & SUPPORT_HELPERS)
    if helpers:
        lines.append(f"from {base_package}.support import {', '.join(helpers)}")
    if not lines:
        return code

    source = code.splitlines()
    insert_at = future_end
    updated = source[:insert_at] + lines + ([""] if insert_at == 0 else []) + source[insert_at:]
    return "\n".join(updated).rstrip() + "\n"


def defined_tests(code: str) -> List[str]:
    try:
        tree = ast.parse(code)
    except SyntaxError:
        return re.findall(r"^\s*(?:async\s+)?def\s+(test_\w+)", code, re.MULTILINE)
    return [
        node.name for node in tree.body
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name.startswith("test_")
    ]


# ═══════════════════════════════════════════════════════════════════════════════
# WRITER
# ═══════════════════════════════════════════════════════════════════════════════

class TestWriter:
    """Turns a plan into a pytest project. Holds no per-run state."""

    __test__ = False

    def __init__(
        self,
        gateway: LLMGateway,
        file_store: Optional[FileStore] = None,
        config: Optional[LLMSettings] = None,
    ):
        self.gateway = gateway
        self.file_store = file_store or FileStore()
        self.config = config or settings.llm

    async def write(
        self,
        plan: TestPlan,
        project_path: Path,
        base_package: str,
        run_id: Optional[str] = None,
    ) -> GeneratedSuite:
        if not plan.items:
            raise WriteFailureError(str(project_path), "plan has no items")
        package = self._package_name(base_package)

        modules: Dict[str, List[TestPlanItem]] = {}
        contents: Dict[str, str] = {}
        for module, items in self.plan_modules(plan):
            rel = f"{package}/{module}.py"
            code = await self._generate_module(plan, package, module, items, run_id)
            missing = [i.test_name for i in items if i.test_name not in defined_tests(code)]
            if missing:
                log("WRITER", f"⚠️ {rel} is missing {len(missing)} planned tests: {missing}", run_id=run_id)
            modules[rel] = items
            contents[rel] = code

        files = self.render_scaffold(plan, package, project_path.name)
        files.append(GeneratedFile(path="README.md", content=self.render_readme(plan, package, modules)))
        files.extend(GeneratedFile(path=rel, content=code) for rel, code in contents.items())

        await self.file_store.reset(project_path, SUITE_MARKER)
        written = await self.file_store.write_tree(project_path, files)
        log("WRITER", f"💾 Wrote {len(written)} files to {project_path}", run_id=run_id)

        return GeneratedSuite(
            project_path=str(project_path),
            base_package=package,
            files=written,
            modules={rel: [i.test_name for i in items] for rel, items in modules.items()},
        )

    @staticmethod
    def _package_name(base_package: str) -> str:
        name = re.sub(r"[^0-9a-zA-Z_]+", "_", base_package.replace(".", "_")).strip("_").lower()
        if not name or name[0].isdigit():
            name = f"tests_{name}"
        return name

    # ───────────────────────────────────────────────────────────────────────
    # Grouping and chunking
    # ───────────────────────────────────────────────────────────────────────

    def chunk_budget(self) -> int:
        """Characters of item description one prompt may carry."""
        overhead = len(WRITER_SYSTEM_PROMPT) + len(build_writer_prompt("pkg", "module", "", "", ""))
        budget = int(self.config.context_tokens * CHARS_PER_TOKEN * INPUT_SHARE) - overhead
        return max(budget, MIN_CHUNK_CHARS)

    def plan_modules(self, plan: TestPlan) -> List[Tuple[str, List[TestPlanItem]]]:
        """
        Module name -> items, in deterministic order.

        Each dependency chain goes to the module of its earliest item and is
        never split; chains are packed greedily under the chunk budget, and a
        chain larger than the budget gets a module of its own.
        """
        by_id = {item.operation_id: item for item in plan.items}
        graph = DependencyGraph(
            [(item.operation_id, item.priority) for item in plan.items],
            {item.operation_id: item.depends_on for item in plan.items},
        )

        groups: Dict[str, List[List[TestPlanItem]]] = {}
        for chain in graph.components():
            items = [by_id[node] for node in chain]
            earliest = min(items, key=lambda i: i.priority)
            groups.setdefault(self._resource(earliest), []).append(items)

        budget = self.chunk_budget()
        result: List[Tuple[str, List[TestPlanItem]]] = []
        for resource in sorted(groups, key=lambda r: min(c[0].priority for c in groups[r])):
            base = module_name_for(resource)
            chunks: List[List[TestPlanItem]] = []
            size = 0
            for chain in groups[resource]:
                chain_size = sum(len(self.describe_item(i, plan)) for i in chain)
                if chain_size > budget:
                    log("WRITER", f"Dependency chain of {len(chain)} items exceeds chunk budget; kept whole")
                if chunks and size + chain_size <= budget:
                    chunks[-1].extend(chain)
                    size += chain_size
                else:
                    chunks.append(list(chain))
                    size = chain_size
            for index, chunk in enumerate(chunks):
                name = base if index == 0 else f"{base}_{index + 1}"
                result.append((name, chunk))
        return result

    @staticmethod
    def _resource(item: TestPlanItem) -> str:
        for segment in item.path.split("?", 1)[0].strip("/").split("/"):
            if segment and not segment.startswith("{"):
                return segment
        return "root"

    # ───────────────────────────────────────────────────────────────────────
    # Prompt material
    # ───────────────────────────────────────────────────────────────────────

    def describe_item(self, item: TestPlanItem, plan: TestPlan) -> str:
        lines = [
            f"### {item.test_name} (priority {item.priority}, {item.category.value})",
            f"Operation: {item.operation_id} - {item.method} {item.path}",
            f"Description: {item.description}",
            f"Expected status: {item.expected_status}",
        ]
        if item.assertions:
            lines.append(f"Assertions: {'; '.join(item.assertions)}")
        if item.category != TestCategory.POSITIVE:
            lines.append(f"Send exactly: {item.method} {item.path}")
        if item.suggested_body is not None:
            lines.append(f"Request body (JSON): {item.suggested_body}")
        elif item.needs_body:
            lines.append("Request body: build a realistic, valid body with the support helpers")
        if item.depends_on:
            producers = ", ".join(
                f"{dep} ({self._test_name_of(dep, plan)})" for dep in item.depends_on
            )
            lines.append(f"Depends on: {producers}. Read their values from `shared`.")
        dependents = [i.operation_id for i in plan.items if item.operation_id in i.depends_on]
        if dependents:
            lines.append(
                f"Produces data for: {', '.join(dependents)}. "
                f"Store what they need as shared[\"{item.operation_id}.<field>\"]."
            )
        return "\n".join(lines) + "\n"

    @staticmethod
    def _test_name_of(operation_id: str, plan: TestPlan) -> str:
        for item in plan.items:
            if item.operation_id == operation_id:
                return item.test_name
        return operation_id

    @staticmethod
    def describe_dependencies(items: List[TestPlanItem], plan: TestPlan) -> str:
        ids = {item.operation_id for item in items}
        lines = []
        for dep in plan.dependencies:
            if dep.source_operation_id in ids and dep.target_operation_id in ids:
                flow = f": {dep.data_flow}" if dep.data_flow else ""
                lines.append(f"- {dep.source_operation_id} -> {dep.target_operation_id}{flow}")
        for item in items:
            for source in item.depends_on:
                line = f"- {source} -> {item.operation_id}"
                if not any(existing.startswith(line) for existing in lines):
                    lines.append(line)
        return "\n".join(lines)

    async def _generate_module(
        self,
        plan: TestPlan,
        package: str,
        module: str,
        items: List[TestPlanItem],
        run_id: Optional[str],
    ) -> str:
        prompt = build_writer_prompt(
            base_package=package,
            module_name=module,
            base_url=plan.base_url,
            items_description="\n".join(self.describe_item(i, plan) for i in items),
            dependency_info=self.describe_dependencies(items, plan),
        )
        log("WRITER", f"✍️ Generating {package}/{module}.py ({len(items)} tests)", run_id=run_id)
        result = await self.gateway.complete(
            WRITER_SYSTEM_PROMPT,
            prompt,
            temperature=self.config.writer_temperature,
            max_tokens=self.config.writer_max_tokens,
        )
        code = extract_python_code(result.unwrap())
        if not code.strip():
            raise WriteFailureError(f"{package}/{module}.py", "LLM returned no code")
        return fix_imports(code, package)

    # ───────────────────────────────────────────────────────────────────────
    # Scaffold
    # ───────────────────────────────────────────────────────────────────────

    def render_scaffold(self, plan: TestPlan, package: str, suite_name: str) -> List[GeneratedFile]:
        return [
            GeneratedFile(path=SUITE_MARKER, content="specpilot-suite\n"),
            GeneratedFile(path="pyproject.toml", content=PYPROJECT_TEMPLATE.substitute(
                name=sanitize_name(suite_name).lower(),
                title=plan.title.replace('"', "'"),
                package=package,
            )),
            GeneratedFile(path=f"{package}/__init__.py", content=""),
            GeneratedFile(path=f"{package}/conftest.py", content=CONFTEST_TEMPLATE.substitute(
                base_url=json.dumps(plan.base_url),
            )),
            GeneratedFile(path=f"{package}/support.py", content=SUPPORT_SOURCE),
        ]

    def render_readme(self, plan: TestPlan, package: str, modules: Dict[str, List[TestPlanItem]]) -> str:
        counts = plan.counts()
        lines = [
            f"# {plan.title}",
            "",
            "Generated API tests (pytest + httpx).",
            "",
            "## Strategy",
            "",
            plan.reasoning or "-",
            "",
            "| Category | Tests |",
            "|---|---|",
        ]
        lines.extend(f"| {category} | {count} |" for category, count in counts.items())
        lines.extend(["", "## Modules", ""])
        for rel, items in modules.items():
            lines.append(f"- `{rel}`: " + ", ".join(f"`{i.test_name}`" for i in items))
        if plan.dependencies or any(i.depends_on for i in plan.items):
            lines.extend(["", "## Dependencies", ""])
            for dep in plan.dependencies:
                flow = f" ({dep.data_flow})" if dep.data_flow else ""
                lines.append(f"- {dep.source_operation_id} -> {dep.target_operation_id}{flow}")
            declared = {(d.source_operation_id, d.target_operation_id) for d in plan.dependencies}
            for item in plan.items:
                for source in item.depends_on:
                    if (source, item.operation_id) not in declared:
                        lines.append(f"- {source} -> {item.operation_id}")
        lines.extend([
            "",
            "## Running",
            "",
            "```",
            "pip install pytest httpx",
            f"API_BASE_URL={plan.base_url} pytest {package}",
            "```",
            "",
        ])
        return "\n".join(lines)

    # ───────────────────────────────────────────────────────────────────────
    # Fix persistence
    # ───────────────────────────────────────────────────────────────────────

    async def read_sources(self, project_path: Path) -> Dict[str, str]:
        """Python sources of the suite, keyed by relative path."""
        return await self.file_store.read_tree(project_path, suffix=".py")

    async def apply_fixes(self, project_path: Path, fixes: List[TestFix]) -> Dict[str, Optional[str]]:
        """
        Persist whole-file fixes. Returns the previous content per path
        (None for files that did not exist) so the caller can revert.
        """
        backup: Dict[str, Optional[str]] = {}
        for fix in fixes:
            rel = normalize_relative(fix.file_path)
            if rel not in backup:
                backup[rel] = await self.file_store.read_file(project_path, rel)
            content = fix.content if fix.content.endswith("\n") else fix.content + "\n"
            await self.file_store.write_file(project_path, rel, content)
        return backup

    async def restore(self, project_path: Path, backup: Dict[str, Optional[str]]) -> None:
        for rel, content in backup.items():
            if content is None:
                await self.file_store.delete_file(project_path, rel)
            else:
                await self.file_store.write_file(project_path, rel, content)
