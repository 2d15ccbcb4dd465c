# specpilot/llm/__init__.py
"""
LLM gateway and prompt builders.
"""
from .adapter import LLMGateway, LLMResult

__all__ = ["LLMGateway", "LLMResult"]
