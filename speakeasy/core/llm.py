"""
SpeakEasy Assistant — LLM Provider Abstraction.

Single public coroutine `complete()` that routes to the configured provider.
Provider is selected on first use via the LLM_PROVIDER env var.
Supports: gemini (default), anthropic, openai, cohere, openrouter.

The LLM is an optional, untrusted collaborator: callers validate everything
it returns and fall back to deterministic logic on any failure.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

# (api_key, model, system, user_message, max_tokens, temperature) -> text
_ProviderFn = Callable[[str, str, str, str, int, float], Awaitable[str]]


class LLMUnavailableError(RuntimeError):
    """Raised when no LLM provider is configured."""


# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


async def _complete_gemini(
    api_key: str, model: str, system: str, user_message: str, max_tokens: int, temperature: float,
) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(model_name=model, system_instruction=system)
    response = await gm.generate_content_async(
        user_message,
        generation_config=genai.types.GenerationConfig(
            max_output_tokens=max_tokens, temperature=temperature,
        ),
    )
    return response.text


async def _complete_anthropic(
    api_key: str, model: str, system: str, user_message: str, max_tokens: int, temperature: float,
) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        temperature=temperature,
        system=system,
        messages=[{"role": "user", "content": user_message}],
    )
    return response.content[0].text


async def _openai_chat(
    client, model: str, system: str, user_message: str, max_tokens: int, temperature: float,
) -> str:
    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        temperature=temperature,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.choices[0].message.content or ""


async def _complete_openai(
    api_key: str, model: str, system: str, user_message: str, max_tokens: int, temperature: float,
) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    return await _openai_chat(client, model, system, user_message, max_tokens, temperature)


async def _complete_openrouter(
    api_key: str, model: str, system: str, user_message: str, max_tokens: int, temperature: float,
) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key, base_url=_OPENROUTER_BASE_URL)
    return await _openai_chat(client, model, system, user_message, max_tokens, temperature)


async def _complete_cohere(
    api_key: str, model: str, system: str, user_message: str, max_tokens: int, temperature: float,
) -> str:
    import cohere

    client = cohere.AsyncClientV2(api_key=api_key)
    response = await client.chat(
        model=model,
        max_tokens=max_tokens,
        temperature=temperature,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.message.content[0].text


# ---------------------------------------------------------------------------
# Provider selection (runs once at first call)
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "gemini":     (_complete_gemini,     "gemini-2.0-flash"),
    "anthropic":  (_complete_anthropic,  "claude-haiku-4-5-20251001"),
    "openai":     (_complete_openai,     "gpt-4o-mini"),
    "openrouter": (_complete_openrouter, "google/gemini-2.0-flash-001"),
    "cohere":     (_complete_cohere,     "command-a-03-2025"),
}


def is_available() -> bool:
    """True when an LLM API key is configured."""
    from speakeasy.config import settings

    return settings.ai_enabled


def _select_provider() -> tuple[_ProviderFn, str, str]:
    """Read settings and return (provider_fn, model, api_key)."""
    from speakeasy.config import settings

    if not settings.ai_enabled:
        raise LLMUnavailableError("LLM_API_KEY is not set")

    provider_name = settings.LLM_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    fn, default_model = _PROVIDERS[provider_name]
    model = settings.LLM_MODEL or default_model

    logger.info("LLM provider: %s, model: %s", provider_name, model)
    return fn, model, settings.LLM_API_KEY


# Lazy singleton — populated on first call to complete()
_provider_fn: _ProviderFn | None = None
_model: str = ""
_api_key: str = ""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete(
    system: str, user_message: str, max_tokens: int = 256, temperature: float = 0.1,
) -> str:
    """Send a prompt to the configured LLM provider and return the response text.

    Makes exactly one attempt. Raises on configuration or API errors —
    callers should handle exceptions.
    """
    global _provider_fn, _model, _api_key

    if _provider_fn is None:
        _provider_fn, _model, _api_key = _select_provider()

    return await _provider_fn(_api_key, _model, system, user_message, max_tokens, temperature)


def clean_json_response(raw_text: str) -> str:
    """Remove markdown code block delimiters from an LLM's raw response."""
    cleaned_text = raw_text.strip()
    if cleaned_text.startswith("```json"):
        cleaned_text = cleaned_text.removeprefix("```json")
    elif cleaned_text.startswith("```"):
        cleaned_text = cleaned_text.removeprefix("```")
    if cleaned_text.endswith("```"):
        cleaned_text = cleaned_text.removesuffix("```")
    return cleaned_text.strip()
