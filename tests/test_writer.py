"""
TestWriter: project scaffold, module generation, chunking, fix persistence.
"""
import pytest

from specpilot.agents import Planner, TestWriter
from specpilot.agents.writer import SUITE_MARKER, defined_tests, fix_imports
from specpilot.core.config import LLMSettings
from specpilot.core.exceptions import WriteFailureError
from specpilot.models import TestFix, TestPlan, TestPlanItem

from tests.conftest import EXPECTED_STATUSES, MODULE_PATH, PLAN_RESPONSE
from tests.utils.scripted import ScriptedLLM, fenced


async def _plan(sample_spec, llm_settings) -> TestPlan:
    planner = Planner(ScriptedLLM(PLAN_RESPONSE).gateway(llm_settings), llm_settings)
    return await planner.plan(sample_spec)


# ════════════════════════════════════════════════════════════════════
# Writing a suite
# ════════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_write_creates_runnable_project(sample_spec, llm_settings, file_store, temp_workspace, writer_response):
    plan = await _plan(sample_spec, llm_settings)
    llm = ScriptedLLM(writer_response)
    writer = TestWriter(llm.gateway(llm_settings), file_store, llm_settings)
    project = temp_workspace / "items-suite"

    suite = await writer.write(plan, project, "api_tests")

    assert suite.base_package == "api_tests"
    assert set(suite.files) == {
        SUITE_MARKER,
        "pyproject.toml",
        "api_tests/__init__.py",
        "api_tests/conftest.py",
        "api_tests/support.py",
        "README.md",
        MODULE_PATH,
    }
    assert suite.modules == {MODULE_PATH: [i.test_name for i in plan.items]}
    assert llm.calls == 1
    for name in EXPECTED_STATUSES:
        assert name in llm.prompts[0]

    conftest = (project / "api_tests" / "conftest.py").read_text(encoding="utf-8")
    assert 'os.environ.get("API_BASE_URL", "http://localhost:8080")' in conftest
    readme = (project / "README.md").read_text(encoding="utf-8")
    assert "| negative | 3 |" in readme
    assert "createItem -> getItem (item id)" in readme


@pytest.mark.asyncio
async def test_rewrite_is_byte_identical(sample_spec, llm_settings, file_store, temp_workspace, writer_response):
    plan = await _plan(sample_spec, llm_settings)
    project = temp_workspace / "items-suite"

    llm = ScriptedLLM(writer_response, writer_response)
    writer = TestWriter(llm.gateway(llm_settings), file_store, llm_settings)
    await writer.write(plan, project, "api_tests")
    first = {p: (project / p).read_bytes() for p in file_store.list_paths(project)}
    await writer.write(plan, project, "api_tests")
    second = {p: (project / p).read_bytes() for p in file_store.list_paths(project)}

    assert first == second


@pytest.mark.asyncio
async def test_file_store_preserves_bytes(file_store, temp_workspace):
    content = "line one\r\nline two ✓\n\ttabbed\n"
    await file_store.write_file(temp_workspace, "pkg/mod.py", content)
    assert (temp_workspace / "pkg" / "mod.py").read_bytes() == content.encode("utf-8")
    assert await file_store.read_file(temp_workspace, "pkg/mod.py") == content


@pytest.mark.asyncio
async def test_write_refuses_foreign_directory(sample_spec, llm_settings, file_store, temp_workspace, writer_response):
    plan = await _plan(sample_spec, llm_settings)
    project = temp_workspace / "not-ours"
    project.mkdir()
    (project / "important.txt").write_text("keep me", encoding="utf-8")

    writer = TestWriter(ScriptedLLM(writer_response).gateway(llm_settings), file_store, llm_settings)
    with pytest.raises(WriteFailureError):
        await writer.write(plan, project, "api_tests")
    assert (project / "important.txt").read_text(encoding="utf-8") == "keep me"


@pytest.mark.asyncio
async def test_empty_code_is_a_write_failure(sample_spec, llm_settings, file_store, temp_workspace):
    plan = await _plan(sample_spec, llm_settings)
    writer = TestWriter(ScriptedLLM("```python\n\n```").gateway(llm_settings), file_store, llm_settings)
    with pytest.raises(WriteFailureError):
        await writer.write(plan, temp_workspace / "suite", "api_tests")


@pytest.mark.asyncio
async def test_write_rejects_empty_plan(llm_settings, file_store, temp_workspace):
    writer = TestWriter(ScriptedLLM().gateway(llm_settings), file_store, llm_settings)
    with pytest.raises(WriteFailureError):
        await writer.write(TestPlan(title="t", base_url="http://x"), temp_workspace / "suite", "api_tests")


# ════════════════════════════════════════════════════════════════════
# Imports
# ════════════════════════════════════════════════════════════════════

def test_fix_imports_adds_missing_names():
    code = (
        "def test_x(client):\n"
        "    r = client.get('/x')\n"
        "    assert_status(r, 200)\n"
        "    json.dumps({})\n"
        "    pytest.skip('later')\n"
    )
    fixed = fix_imports(code, "api_tests")
    assert fixed.startswith(
        "import json\nimport pytest\nfrom api_tests.support import assert_status\n\ndef test_x(client):"
    )
    assert defined_tests(fixed) == ["test_x"]


def test_fix_imports_goes_after_future_import():
    code = "from __future__ import annotations\n\ndef test_x():\n    assert random_int() > 0\n"
    fixed = fix_imports(code, "pkg")
    assert fixed.splitlines()[:2] == ["from __future__ import annotations", "from pkg.support import random_int"]


def test_fix_imports_leaves_complete_code_alone():
    code = "import pytest\n\n\ndef test_x():\n    pytest.skip()\n"
    assert fix_imports(code, "pkg") == code
    assert fix_imports("def broken(:\n", "pkg") == "def broken(:\n"


# ════════════════════════════════════════════════════════════════════
# Chunking
# ════════════════════════════════════════════════════════════════════

def _item(n: int, depends_on=None, path="/items") -> TestPlanItem:
    return TestPlanItem(
        operation_id=f"op{n}",
        method="GET",
        path=path,
        description="d" * 900,
        priority=n,
        depends_on=depends_on or [],
    )


def test_chunking_never_splits_a_dependency_chain():
    config = LLMSettings(default_provider="scripted", context_tokens=10)
    writer = TestWriter(ScriptedLLM().gateway(config), config=config)
    plan = TestPlan(
        title="t",
        base_url="http://x",
        items=[
            _item(1), _item(2, ["op1"]), _item(3, ["op2"]),
            _item(4), _item(5), _item(6),
            _item(7, path="/orders"),
        ],
    )

    modules = writer.plan_modules(plan)
    names = [name for name, _ in modules]
    assert names[0] == "test_items"
    assert "test_items_2" in names
    assert names[-1] == "test_orders"

    owners = {item.operation_id: name for name, items in modules for item in items}
    assert len(owners) == 7
    assert owners["op1"] == owners["op2"] == owners["op3"]
    assert sum(len(items) for _, items in modules) == 7


def test_chain_goes_to_module_of_its_earliest_item():
    config = LLMSettings(default_provider="scripted")
    writer = TestWriter(ScriptedLLM().gateway(config), config=config)
    plan = TestPlan(title="t", base_url="http://x", items=[
        _item(1, path="/users"),
        _item(2, ["op1"], path="/orders"),
    ])
    assert [(name, [i.operation_id for i in items]) for name, items in writer.plan_modules(plan)] == [
        ("test_users", ["op1", "op2"]),
    ]


# ════════════════════════════════════════════════════════════════════
# Fix persistence
# ════════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_apply_fixes_and_restore(llm_settings, file_store, temp_workspace):
    writer = TestWriter(ScriptedLLM().gateway(llm_settings), file_store, llm_settings)
    await file_store.write_file(temp_workspace, "pkg/test_a.py", "original\n")

    backup = await writer.apply_fixes(temp_workspace, [
        TestFix(file_path="pkg/test_a.py", content="patched"),
        TestFix(file_path="/pkg/test_new.py", content="brand new\n"),
    ])

    assert backup == {"pkg/test_a.py": "original\n", "pkg/test_new.py": None}
    assert (temp_workspace / "pkg" / "test_a.py").read_text(encoding="utf-8") == "patched\n"

    await writer.restore(temp_workspace, backup)
    assert (temp_workspace / "pkg" / "test_a.py").read_text(encoding="utf-8") == "original\n"
    assert not (temp_workspace / "pkg" / "test_new.py").exists()


@pytest.mark.asyncio
async def test_fix_outside_project_is_refused(llm_settings, file_store, temp_workspace):
    writer = TestWriter(ScriptedLLM().gateway(llm_settings), file_store, llm_settings)
    with pytest.raises(WriteFailureError):
        await writer.apply_fixes(temp_workspace / "suite", [TestFix(file_path="../escape.py", content="x")])


def test_fenced_helper_round_trips_through_extractor():
    from specpilot.utils.parser import extract_python_code
    assert extract_python_code(fenced("x = 1\n")) == "x = 1\n"
