# specpilot/utils/parser.py
"""
Parsers for LLM output.

LLM responses are untrusted text. Everything here returns None (or an empty
result) on garbage instead of raising, so callers can fall back
deterministically.
"""
import json
import re
from typing import Any, Dict, Optional

# ═══════════════════════════════════════════════════════════════════════════════
# CODE FENCES
# ═══════════════════════════════════════════════════════════════════════════════

FENCE_RE = re.compile(r"```[a-zA-Z0-9_+-]*\s*\n(.*?)\n?```", re.DOTALL)

BRACKET_PAIRS = {"{": "}", "[": "]"}


def strip_code_fences(raw: str) -> str:
    """
    Return the body of the first fenced block, or the input without a dangling
    opening fence when the block was cut off.
    """
    if not raw:
        return ""
    cleaned = raw.strip()
    match = FENCE_RE.search(cleaned)
    if match:
        return match.group(1).strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        return "\n".join(lines).strip()
    return cleaned


def extract_python_code(raw: str) -> str:
    """All fenced python blocks joined, or the raw text when unfenced."""
    if not raw:
        return ""
    blocks = FENCE_RE.findall(raw.strip())
    if blocks:
        return "\n\n".join(b.strip() for b in blocks if b.strip()) + "\n"
    return strip_code_fences(raw).rstrip() + "\n"

# ═══════════════════════════════════════════════════════════════════════════════
# JSON
# ═══════════════════════════════════════════════════════════════════════════════

def _try_load(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def repair_truncated_json(text: str) -> str:
    """
    Close an object that was cut off mid-stream.

    Walks the text tracking strings and open brackets, drops a trailing comma
    or dangling key, and appends the missing closers in nesting order.
    """
    stack = []
    in_string = False
    escape = False
    for ch in text:
        if escape:
            escape = False
            continue
        if ch == "\\" and in_string:
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch in BRACKET_PAIRS:
            stack.append(BRACKET_PAIRS[ch])
        elif ch in ("}", "]") and stack:
            stack.pop()

    repaired = text
    if in_string:
        repaired += '"'
    repaired = re.sub(r",\s*$", "", repaired)
    # A key with no value: {"a": 1, "b"
    repaired = re.sub(r',\s*"[^"]*"\s*:?\s*$', "", repaired)
    return repaired + "".join(reversed(stack))


def parse_json_object(raw: str) -> Optional[Dict[str, Any]]:
    """
    Parse a JSON object out of LLM output.

    Tries, in order: the fence-stripped text, the first '{' to the last '}',
    and a truncation repair from the first '{'.
    """
    if not raw or not isinstance(raw, str):
        return None

    cleaned = strip_code_fences(raw)
    parsed = _try_load(cleaned)
    if parsed is not None:
        return parsed

    first = cleaned.find("{")
    if first == -1:
        return None
    last = cleaned.rfind("}")
    if last > first:
        parsed = _try_load(cleaned[first:last + 1])
        if parsed is not None:
            return parsed

    return _try_load(repair_truncated_json(cleaned[first:]))
