# specpilot/llm/providers/openai.py
"""
OpenAI chat completions provider.
"""
import aiohttp
from typing import Optional

from specpilot.core.config import LLMSettings
from specpilot.llm.adapter import ProviderError


DEFAULT_MODEL = "gpt-4o-mini"
API_URL = "https://api.openai.com/v1/chat/completions"


async def call(
    prompt: str,
    system_prompt: str,
    model: Optional[str],
    temperature: float,
    max_tokens: int,
    config: LLMSettings,
) -> str:
    api_key = config.openai_api_key
    if not api_key:
        raise ProviderError("OPENAI_API_KEY not configured")

    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})

    payload = {
        "model": model or DEFAULT_MODEL,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    headers = {
        "Authorization": f"Bearer {api_key}",
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
                raise ProviderError(f"OpenAI API error {response.status}: {text[:200]}")

            data = await response.json()

    try:
        return data["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError) as e:
        raise ProviderError(f"Failed to parse OpenAI response: {e}")
