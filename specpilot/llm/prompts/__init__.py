# specpilot/llm/prompts/__init__.py
"""
Prompt templates for the planner, test writer and self-healer.
"""
from .planner import PLANNER_SYSTEM_PROMPT, build_planner_prompt
from .writer import WRITER_SYSTEM_PROMPT, build_writer_prompt
from .healer import HEALER_SYSTEM_PROMPT, build_healer_prompt

__all__ = [
    "PLANNER_SYSTEM_PROMPT", "build_planner_prompt",
    "WRITER_SYSTEM_PROMPT", "build_writer_prompt",
    "HEALER_SYSTEM_PROMPT", "build_healer_prompt",
]
