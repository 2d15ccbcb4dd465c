# specpilot/llm/prompts/healer.py
"""
Self-heal prompt: diagnose genuine failures and return whole-file fixes.
"""

HEALER_SYSTEM_PROMPT = (
    "You are a senior Python test engineer fixing broken pytest tests. "
    "Return ONLY a valid JSON object. No markdown fences."
)

COLLECTION_NOTE = """
IMPORTANT: Some modules failed to import or collect (syntax error, bad import, missing name).
You MUST fix ALL of them. Include a fix entry for EVERY affected file.
"""


def build_healer_prompt(
    iteration: int,
    failure_details: str,
    raw_output_tail: str,
    relevant_files: str,
    protected_tests: str,
    has_collection_errors: bool = False,
) -> str:
    collection_block = f"\n{COLLECTION_NOTE}\n" if has_collection_errors else ""
    protected_block = protected_tests or "None in this batch."

    return f"""You are debugging failing pytest + httpx API tests (iteration {iteration}).
{collection_block}
## Test failures

{failure_details}

## Raw output (tail)

{raw_output_tail}

## Source files

{relevant_files}

## Expected-failure tests (their expected status is NOT negotiable)

{protected_block}

## Core Principle

You MUST distinguish between:

### TEST CODE ISSUE
- syntax errors, bad imports, undefined names
- wrong httpx usage, malformed request (bad path, body, headers)
- assertion bugs (reading the wrong field, wrong type)

-> FIX these.

### ACTUAL API FAILURE (DO NOT FIX)
- API returns a success status for invalid input
- API missing validation
- API returns an unexpected business result

-> DO NOT modify assertions or expected status. Mark as api-bug.

## Output Format (STRICT JSON)

{{
  "failureSource": "test-code" | "api-bug" | "environment" | "unknown",
  "summary": "Short explanation",
  "shouldRetry": true,
  "fixes": [
    {{
      "filePath": "<path exactly as shown in Source files>",
      "content": "COMPLETE FIXED PYTHON FILE",
      "rationale": "What was fixed"
    }}
  ]
}}

## Fixing Rules

1. NEVER change an expected-failure test's expected status (4xx/5xx) just to make it pass.
2. NEVER delete a test function or turn it into a skip to make it pass.
3. NEVER remove business assertions unless they are syntactically invalid.
4. Fix ONLY code correctness issues. Keep function names and order.
5. If failures indicate API bugs -> failureSource = "api-bug", no fixes.
6. Return ONLY JSON."""
