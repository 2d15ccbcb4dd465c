# specpilot/llm/prompts/planner.py
"""
Planner prompt: positive-path tests, dependencies and realistic bodies.
Negative and edge-case tests are generated without the LLM.
"""

PLANNER_SYSTEM_PROMPT = "You are an API testing expert. Return only valid JSON. No markdown fences."


def build_planner_prompt(spec_summary: str) -> str:
    return f"""You are an expert API test architect. Analyze this API specification and produce a test plan for POSITIVE (happy path) scenarios.

## API Specification

{spec_summary}

## Your Task

For EACH operation, create ONE positive test with:
- Realistic request body (for POST/PUT/PATCH)
- Meaningful assertions (check response fields, not just status)
- Correct dependencies (e.g., POST before GET-by-id)

Return a JSON object:
{{
  "title": "Human-readable test plan title",
  "reasoning": "2-3 sentences explaining your test strategy",
  "dependencies": [
    {{
      "sourceOperationId": "createProduct",
      "targetOperationId": "getProductById",
      "dataFlow": "id from POST response used as {{id}} path parameter"
    }}
  ],
  "items": [
    {{
      "operationId": "createProduct",
      "method": "POST",
      "path": "/products",
      "testDescription": "Create a new product with valid data",
      "category": "positive",
      "expectedStatus": 201,
      "dependsOn": [],
      "assertions": ["status 201", "response has id"],
      "needsBody": true,
      "suggestedBody": "{{\\"title\\":\\"Wireless Mouse\\",\\"price\\":29.99}}"
    }}
  ]
}}

## Rules
1. One positive test per operation. Negative and edge-case tests are added separately.
2. For POST/PUT/PATCH, always include a realistic suggestedBody (valid JSON as an escaped string).
3. For POST, do NOT include "id" in suggestedBody (the API generates it).
4. Include meaningful assertions, not just the status code.
5. Identify ALL dependencies (data flowing from one operation to another). dependsOn lists operationIds.
6. EVERY operation in the specification MUST appear in items, with its exact operationId.
7. Return ONLY valid JSON. No markdown, no explanation outside the JSON."""
