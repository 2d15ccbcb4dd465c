# specpilot/llm/adapter.py
"""
LLM gateway - single call contract for all providers.

complete() never raises for provider trouble: it returns an LLMResult that is
either the generated text or a provider error. Whether an error is fatal is
the caller's decision. Retries, if any, belong here and not in the
orchestrator; the default is a single attempt.
"""
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from specpilot.core.config import LLMSettings, settings
from specpilot.core.exceptions import GatewayUnavailableError
from specpilot.core.logging import log


ProviderCall = Callable[..., Awaitable[str]]


@dataclass
class LLMResult:
    """Typed gateway result: text on success, error otherwise."""
    provider: str
    text: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> str:
        """Text, or GatewayUnavailableError for a provider error."""
        if self.error is not None:
            raise GatewayUnavailableError(self.provider, self.error)
        return self.text or ""


class ProviderError(Exception):
    """Raised by provider modules for non-success responses."""


def _provider_map() -> Dict[str, ProviderCall]:
    # Import here to avoid circular imports
    from .providers import anthropic, ollama, openai

    return {
        "anthropic": anthropic.call,
        "openai": openai.call,
        "ollama": ollama.call,
    }


class LLMGateway:
    """
    Unified gateway for LLM providers.

    Handles:
    - Provider selection
    - Hard timeout per call
    - Mapping every provider failure to an LLMResult error
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        config: Optional[LLMSettings] = None,
        providers: Optional[Dict[str, ProviderCall]] = None,
    ):
        self.config = config or settings.llm
        self.provider = provider or self.config.default_provider
        self.model = model or self.config.default_model
        self._providers = providers

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        max_tokens: int = 4000,
    ) -> LLMResult:
        providers = self._providers if self._providers is not None else _provider_map()
        call_func = providers.get(self.provider)
        if call_func is None:
            return LLMResult(provider=self.provider, error=f"Unknown provider: {self.provider}")

        log("LLM", f"🤖 {self.provider} call (temperature={temperature}, max_tokens={max_tokens}, prompt={len(user_prompt)} chars)")
        try:
            text = await asyncio.wait_for(
                call_func(
                    prompt=user_prompt,
                    system_prompt=system_prompt,
                    model=self.model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    config=self.config,
                ),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError:
            log("LLM", f"⏱️ {self.provider} timed out after {self.config.timeout:g}s")
            return LLMResult(provider=self.provider, error=f"timed out after {self.config.timeout:g}s")
        except Exception as e:
            # Report the failure - the caller decides what to do next
            log("LLM", f"❌ {self.provider} error: {e}")
            return LLMResult(provider=self.provider, error=f"Provider error: {e}")

        log("LLM", f"✅ {self.provider} returned {len(text or '')} chars")
        return LLMResult(provider=self.provider, text=text or "")
