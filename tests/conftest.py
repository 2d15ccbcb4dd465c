# tests/conftest.py
"""
Shared pytest fixtures for SpecPilot pipeline tests.

Provides:
- A small normalized spec (GET /items/{id}, POST /items)
- A canned planner answer for it and the statuses its tests assert
- Temporary workspaces
- A pipeline factory wired to scripted LLM / process collaborators
- An httpx AsyncClient over the FastAPI app
"""
import json
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from specpilot.agents import Executor, MarkdownReporter, Planner, SelfHealer, TestWriter
from specpilot.core.config import ExecutorSettings, FileStoreSettings, LLMSettings, RunSettings
from specpilot.lib.file_system import FileStore
from specpilot.models import NormalizedSpec
from specpilot.orchestration.orchestrator import Orchestrator
from specpilot.orchestration.registry import RunRegistry
from specpilot.specs.provider import InMemorySpecProvider

from tests.utils.scripted import ScriptedLLM, ScriptedRunner, fenced, generated_module


# ═══════════════════════════════════════════════════════
# SPEC AND PLAN DATA
# ═══════════════════════════════════════════════════════

SPEC_DATA = {
    "id": "items-api",
    "title": "Items API",
    "version": "1.0.0",
    "baseUrl": "http://localhost:8080",
    "operations": [
        {
            "operationId": "getItem",
            "method": "get",
            "path": "/items/{id}",
            "summary": "Fetch one item",
            "tags": ["items"],
            "parameters": [{"name": "id", "in": "path", "required": True, "schema": {"type": "integer"}}],
            "responses": [{"statusCode": "200", "description": "OK"}, {"statusCode": "404"}],
        },
        {
            "operationId": "createItem",
            "method": "post",
            "path": "/items",
            "summary": "Create an item",
            "tags": ["items"],
            "requestBody": {"required": True, "contentType": "application/json"},
            "responses": [{"statusCode": "201", "description": "Created"}, {"statusCode": "400"}],
        },
    ],
}

PLAN_RESPONSE = json.dumps({
    "title": "Items API Test Plan",
    "reasoning": "Create an item, then read it back.",
    "items": [
        {
            "operationId": "getItem",
            "testDescription": "Fetch the item created earlier",
            "expectedStatus": 200,
            "dependsOn": ["createItem"],
            "assertions": ["status 200", "body.id equals created id"],
        },
        {
            "operationId": "createItem",
            "testDescription": "Create a valid item",
            "expectedStatus": 201,
            "needsBody": True,
            "suggestedBody": {"name": "widget"},
            "assertions": ["status 201", "body has id"],
        },
    ],
    "dependencies": [
        {"sourceOperationId": "createItem", "targetOperationId": "getItem", "dataFlow": "item id"},
    ],
})

# Test function -> status it asserts, for the plan built from PLAN_RESPONSE
EXPECTED_STATUSES: Dict[str, int] = {
    "test_create_item": 201,
    "test_get_item": 200,
    "test_get_item_non_existent_id": 404,
    "test_get_item_invalid_id_format": 400,
    "test_create_item_empty_body": 400,
    "test_get_item_zero_id": 400,
    "test_get_item_negative_id": 400,
}

MODULE_PATH = "api_tests/test_items.py"
CLASSNAME = "api_tests.test_items"


@pytest.fixture
def sample_spec() -> NormalizedSpec:
    return NormalizedSpec.model_validate(SPEC_DATA)


@pytest.fixture
def spec_provider(sample_spec) -> InMemorySpecProvider:
    return InMemorySpecProvider([sample_spec])


@pytest.fixture
def writer_response() -> str:
    return fenced(generated_module(EXPECTED_STATUSES))


# ═══════════════════════════════════════════════════════
# FIXTURES - Workspace
# ═══════════════════════════════════════════════════════

@pytest.fixture
def temp_workspace():
    """Temporary base directory for generated suites."""
    temp_dir = tempfile.mkdtemp(prefix="specpilot_test_")
    workspace = Path(temp_dir)
    yield workspace
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def file_store() -> FileStore:
    return FileStore(FileStoreSettings(write_timeout=5.0))


@pytest.fixture
def llm_settings() -> LLMSettings:
    return LLMSettings(default_provider="scripted", timeout=5.0)


@pytest.fixture
def run_settings(temp_workspace) -> RunSettings:
    return RunSettings(
        default_max_iterations=3,
        default_base_directory=temp_workspace,
        default_base_package="api_tests",
        spec_lookup_timeout=5.0,
    )


# ═══════════════════════════════════════════════════════
# FIXTURES - Pipeline
# ═══════════════════════════════════════════════════════

@pytest.fixture
def build_orchestrator(spec_provider, file_store, llm_settings, run_settings):
    """Factory: Orchestrator over real agents with scripted LLM and runner."""

    def build(
        llm: ScriptedLLM,
        runner: ScriptedRunner,
        registry: Optional[RunRegistry] = None,
    ) -> Orchestrator:
        gateway = llm.gateway(llm_settings)
        writer = TestWriter(gateway, file_store, llm_settings)
        executor = Executor(
            runner=runner,
            file_store=file_store,
            reporter=MarkdownReporter(file_store),
            config=ExecutorSettings(python_executable="python", test_timeout=10.0, compile_timeout=5.0),
        )
        return Orchestrator(
            registry or RunRegistry(),
            spec_provider,
            planner=Planner(gateway, llm_settings),
            writer=writer,
            executor=executor,
            healer=SelfHealer(gateway, writer, executor, llm_settings),
            file_store=file_store,
            config=run_settings,
        )

    return build


@pytest_asyncio.fixture
async def async_client(build_orchestrator, spec_provider):
    """AsyncClient over the app; state is wired directly since ASGITransport skips lifespan."""
    from specpilot.main import app, init_state

    orchestrator = build_orchestrator(ScriptedLLM(), ScriptedRunner())
    init_state(app, orchestrator.registry, spec_provider, orchestrator)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    await orchestrator.shutdown()
