"""Pluggable reasoning-engine backends."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ecosync.llm.base import LLMProvider, LLMResponse, Message, ToolCall, ToolDefinition

if TYPE_CHECKING:
    from ecosync.config import EcoSyncSettings


def create_provider(settings: EcoSyncSettings) -> LLMProvider:
    """Instantiate the configured provider."""
    name = settings.llm_provider.lower()

    if name == "gemini":
        from ecosync.llm.gemini import GeminiProvider

        return GeminiProvider(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )

    if name == "openai":
        from ecosync.llm.openai_compat import OpenAICompatProvider

        return OpenAICompatProvider(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            base_url=settings.openai_base_url or None,
        )

    if name == "ollama":
        from ecosync.llm.openai_compat import OpenAICompatProvider

        return OpenAICompatProvider(
            api_key="ollama",
            model=settings.ollama_model,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            base_url=f"{settings.ollama_url}/v1",
        )

    raise ValueError(f"Unknown LLM provider: {name!r}. Use gemini|openai|ollama.")


__all__ = [
    "LLMProvider",
    "LLMResponse",
    "Message",
    "ToolCall",
    "ToolDefinition",
    "create_provider",
]
