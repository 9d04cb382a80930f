"""Narrative-completion providers.

A provider wraps one configured chat model. Any failure of a single call
(transport error, non-2xx response, timeout, empty completion) surfaces as
`NarrativeProviderError` so the generator can move on to the next one.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from threatlens.config import NarrativeProviderConfig
from threatlens.llm import LLMProviderError, create_chat_model

logger = structlog.get_logger()


class NarrativeProviderError(Exception):
    """A single provider call failed or returned nothing usable."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


def _response_text(content: Any) -> str:
    # Anthropic models may return a list of content blocks.
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
        return "".join(parts)
    return ""


class CompletionProvider:
    """One chat model with a bounded per-call timeout."""

    def __init__(self, name: str, llm: BaseChatModel, timeout_seconds: float = 30.0):
        self.name = name
        self.llm = llm
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_config(
        cls,
        provider: NarrativeProviderConfig,
        *,
        temperature: float,
        max_tokens: int,
    ) -> "CompletionProvider":
        """Build a provider from configuration.

        Raises:
            LLMProviderError: If the provider configuration is unusable.
        """
        llm = create_chat_model(provider, temperature=temperature, max_tokens=max_tokens)
        return cls(provider.name, llm, provider.timeout_seconds)

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Request a completion.

        Args:
            system_prompt: System message.
            user_prompt: User message.

        Returns:
            Non-empty completion text.

        Raises:
            NarrativeProviderError: On any failure or an empty completion.
        """
        messages = [
            SystemMessage(content=system_prompt),
            HumanMessage(content=user_prompt),
        ]
        try:
            response = await asyncio.wait_for(
                self.llm.ainvoke(messages), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise NarrativeProviderError(
                self.name, f"timed out after {self.timeout_seconds}s"
            ) from e
        except Exception as e:
            raise NarrativeProviderError(self.name, str(e) or type(e).__name__) from e

        text = _response_text(getattr(response, "content", "")).strip()
        if not text:
            raise NarrativeProviderError(self.name, "empty completion")
        return text


def build_providers(
    configs: list[NarrativeProviderConfig],
    *,
    temperature: float,
    max_tokens: int,
) -> list[CompletionProvider]:
    """Build the ordered provider chain, skipping unusable entries."""
    providers: list[CompletionProvider] = []
    for config in configs:
        try:
            providers.append(
                CompletionProvider.from_config(
                    config, temperature=temperature, max_tokens=max_tokens
                )
            )
        except LLMProviderError as e:
            logger.warning("narrative_provider_skipped", provider=config.name, error=str(e))
    return providers
