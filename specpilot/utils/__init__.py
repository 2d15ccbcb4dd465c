# specpilot/utils/__init__.py
from .parser import extract_python_code, parse_json_object, repair_truncated_json, strip_code_fences

__all__ = ["extract_python_code", "parse_json_object", "repair_truncated_json", "strip_code_fences"]
