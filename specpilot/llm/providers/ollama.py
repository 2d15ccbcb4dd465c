# specpilot/llm/providers/ollama.py
"""
Ollama provider (local models, no API key).
"""
import aiohttp
from typing import Optional

from specpilot.core.config import LLMSettings
from specpilot.llm.adapter import ProviderError


DEFAULT_MODEL = "qwen2.5-coder:7b"


async def call(
    prompt: str,
    system_prompt: str,
    model: Optional[str],
    temperature: float,
    max_tokens: int,
    config: LLMSettings,
) -> str:
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})

    payload = {
        "model": model or DEFAULT_MODEL,
        "messages": messages,
        "stream": False,
        "options": {
            "temperature": temperature,
            "num_predict": max_tokens,
        },
    }

    async with aiohttp.ClientSession() as session:
        async with session.post(
            f"{config.ollama_base_url.rstrip('/')}/api/chat",
            json=payload,
            timeout=aiohttp.ClientTimeout(total=config.timeout)
        ) as response:
            if response.status != 200:
                text = await response.text()
                raise ProviderError(f"Ollama API error {response.status}: {text[:200]}")

            data = await response.json()

    try:
        return data["message"]["content"]
    except (KeyError, TypeError) as e:
        raise ProviderError(f"Failed to parse Ollama response: {e}")
