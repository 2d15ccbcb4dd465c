# specpilot/llm/providers/__init__.py
"""
Provider modules. Each exposes `async call(prompt, system_prompt, model,
temperature, max_tokens, config) -> str` and raises on non-success responses.
"""
