# specpilot/llm/prompts/writer.py
"""
Test writer prompt: one pytest module of httpx tests per chunk of plan items.
"""

WRITER_SYSTEM_PROMPT = (
    "You are a senior Python test engineer. Return ONLY a complete, importable "
    "Python module. No markdown. No explanations."
)


def build_writer_prompt(
    base_package: str,
    module_name: str,
    base_url: str,
    items_description: str,
    dependency_info: str,
) -> str:
    return f"""Write a COMPLETE pytest module that tests an HTTP API with httpx.

## Requirements

Module: {base_package}/{module_name}.py
Base URL: {base_url} (already configured on the `client` fixture)

## Tests to write (in this order)

{items_description}

## Dependencies
{dependency_info or "None - tests are independent."}

## MANDATORY IMPORTS - copy exactly

import pytest

from {base_package}.support import assert_status, random_string, random_int, random_float, random_email

## Fixtures available (from conftest.py, do not redefine)

- `client`: a session-scoped `httpx.Client` with the base URL set. Use relative paths: `client.get("/items/1")`.
- `shared`: a session-scoped dict. A producer test stores values (e.g. `shared["createItem.id"] = body["id"]`);
  a dependent test reads them and calls `pytest.skip("...")` when the value is missing.

## Dynamic Data Rules - MANDATORY

- NEVER hardcode static payload data for positive tests; use the support helpers.
- Match the schema type: integer -> random_int(), number -> random_float(), string -> random_string("prefix"),
  email -> random_email(), boolean -> True/False, enum -> a valid enum value.
- For POST requests, omit server-generated fields like "id".
- Negative and edge-case tests send EXACTLY the request described in the plan item (path and body as given).

## Assertions

- Every test calls `assert_status(response, <expectedStatus>)` with the plan item's expected status as an integer literal.
- Positive tests also assert the key response fields named in the plan item's assertions.
- Negative tests EXPECT the failure status from the plan. DO NOT relax assertions to always pass.

## Critical Rules
1. Each test function name MUST be exactly the name given for its plan item.
2. Test functions take `client` (and `shared` when they produce or consume data) as arguments.
3. Tests MUST FAIL if API behavior is incorrect. Do not wrap assertions in try/except.
4. Return ONLY Python code. No markdown."""
