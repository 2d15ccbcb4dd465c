# specpilot/llm/providers/anthropic.py
"""
Anthropic Messages API provider.
"""
import aiohttp
from typing import Optional

from specpilot.core.config import LLMSettings
from specpilot.llm.adapter import ProviderError


DEFAULT_MODEL = "claude-sonnet-4-20250514"
API_URL = "https://api.anthropic.com/v1/messages"


async def call(
    prompt: str,
    system_prompt: str,
    model: Optional[str],
    temperature: float,
    max_tokens: int,
    config: LLMSettings,
) -> str:
    api_key = config.anthropic_api_key
    if not api_key:
        raise ProviderError("ANTHROPIC_API_KEY not configured")

    payload = {
        "model": model or DEFAULT_MODEL,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "messages": [{"role": "user", "content": prompt}],
    }
    if system_prompt:
        payload["system"] = system_prompt

    headers = {
        "x-api-key": api_key,
        "anthropic-version": "2023-06-01",
        "Content-Type": "application/json",
    }

    async with aiohttp.ClientSession() as session:
        async with session.post(
            API_URL,
            json=payload,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=config.timeout)
        ) as response:
            if response.status == 429:
                raise ProviderError("Rate limited (429)")

            if response.status != 200:
                text = await response.text()
                raise ProviderError(f"Anthropic API error {response.status}: {text[:200]}")

            data = await response.json()

    blocks = [b.get("text", "") for b in data.get("content", []) if b.get("type") == "text"]
    if not blocks:
        raise ProviderError("No text content in Anthropic response")
    return "".join(blocks)
