"""LLM provider factory.

ThreatLens talks to narrative providers through LangChain chat models:
- Anthropic (via langchain-anthropic)
- OpenAI or any OpenAI-compatible gateway (via langchain-openai)

Providers are configured as an ordered list, see
`threatlens.config.NarrativeProviderConfig`.
"""

from __future__ import annotations

from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel

from threatlens.config import NarrativeProviderConfig


class LLMProviderError(ValueError):
    """Raised when a configured LLM provider is invalid or incomplete."""


def create_chat_model(
    provider: NarrativeProviderConfig,
    *,
    temperature: float,
    max_tokens: int,
    **kwargs: Any,
) -> BaseChatModel:
    """Create a chat model for one configured provider.

    Retries are disabled on the client: a failed call moves on to the next
    provider instead.

    Args:
        provider: Provider configuration.
        temperature: Sampling temperature.
        max_tokens: Maximum tokens to generate.
        kwargs: Provider-specific keyword args.

    Returns:
        A LangChain chat model instance.
    """
    if not provider.api_key:
        raise LLMProviderError(f"Provider {provider.name!r} has no API key configured")

    if provider.kind == "anthropic":
        try:
            from langchain_anthropic import ChatAnthropic
        except ImportError as e:
            raise LLMProviderError(
                "Anthropic provider selected but `langchain-anthropic` is not installed."
            ) from e

        anthropic_kwargs: dict[str, Any] = {
            "model": provider.model_id,
            "api_key": provider.api_key,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "timeout": provider.timeout_seconds,
            "max_retries": 0,
            **kwargs,
        }
        if provider.endpoint:
            anthropic_kwargs["base_url"] = provider.endpoint

        return ChatAnthropic(**anthropic_kwargs)

    if provider.kind == "openai":
        try:
            from langchain_openai import ChatOpenAI
        except ImportError as e:
            raise LLMProviderError(
                "OpenAI provider selected but `langchain-openai` is not installed."
            ) from e

        openai_kwargs: dict[str, Any] = {
            "model": provider.model_id,
            "api_key": provider.api_key,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "timeout": provider.timeout_seconds,
            "max_retries": 0,
            **kwargs,
        }
        if provider.endpoint:
            openai_kwargs["base_url"] = provider.endpoint

        return ChatOpenAI(**openai_kwargs)

    raise LLMProviderError(
        f"Unsupported LLM provider kind: {provider.kind!r}. Expected 'anthropic' or 'openai'."
    )
