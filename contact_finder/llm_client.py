"""OpenRouter completion client used by query enhancement and AI extraction."""
from __future__ import annotations

import time
from typing import Any

from contact_finder.config import settings
from contact_finder.services.env_safety import sanitize_tls_environment
from contact_finder.services.logger import log_llm_call


def _temperature_for_model(model: str) -> float:
    # Some GPT-5-compatible gateways reject temperature=0.
    if "gpt-5" in (model or "").lower():
        return 1
    return 0.2


class OpenRouterProvider:
    """Thin adapter over the OpenAI-compatible chat completions API."""

    def __init__(self, openai_client: Any, model: str, *, max_tokens: int = 1200):
        self._client = openai_client
        self.model = model
        self.max_tokens = max_tokens

    async def complete(self, *, system: str, prompt: str, caller: str = "unknown") -> str:
        started = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self.max_tokens,
                temperature=_temperature_for_model(self.model),
            )
        except Exception as exc:
            log_llm_call(
                model=self.model,
                caller=caller,
                duration_ms=int((time.monotonic() - started) * 1000),
                status="error",
                error=str(exc),
            )
            raise

        usage = getattr(response, "usage", None)
        log_llm_call(
            model=self.model,
            caller=caller,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        return getattr(choices[0].message, "content", None) or ""


def get_model() -> str:
    """Get the active OpenRouter model id."""
    if settings.openrouter_model:
        return settings.openrouter_model
    return settings.default_model


def get_client() -> OpenRouterProvider | None:
    """Build the provider, or None when no API key is configured."""
    if not settings.openrouter_api_key:
        return None

    from openai import AsyncOpenAI

    sanitize_tls_environment()
    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    openai_client = AsyncOpenAI(api_key=settings.openrouter_api_key, base_url=base_url)
    return OpenRouterProvider(openai_client, get_model(), max_tokens=settings.ai_max_tokens)


_client: OpenRouterProvider | None = None


def client() -> OpenRouterProvider | None:
    """Get or create the shared provider."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
