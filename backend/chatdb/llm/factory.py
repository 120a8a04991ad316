"""Provider tag to adapter mapping."""

from __future__ import annotations

from functools import partial
from typing import Any, Callable, Optional

import httpx

from ..core.exceptions import ConfigurationError
from .anthropic import AnthropicAdapter
from .base import LLMAdapter, LLMProvider
from .local import LocalAdapter
from .openai import OpenAIAdapter
from .perplexity import PerplexityAdapter

ADAPTERS: dict[LLMProvider, Callable[..., LLMAdapter]] = {
    LLMProvider.OPENAI: OpenAIAdapter,
    LLMProvider.ANTHROPIC: AnthropicAdapter,
    LLMProvider.PERPLEXITY: PerplexityAdapter,
    LLMProvider.OLLAMA: partial(LocalAdapter, LLMProvider.OLLAMA),
    LLMProvider.LMSTUDIO: partial(LocalAdapter, LLMProvider.LMSTUDIO),
    LLMProvider.LLAMACPP: partial(LocalAdapter, LLMProvider.LLAMACPP),
}


def create_adapter(provider: LLMProvider | str, client: Optional[httpx.Client] = None) -> LLMAdapter:
    """Build an uninitialized adapter for ``provider``.

    Raises:
        ConfigurationError: If the provider is unknown
    """
    try:
        builder = ADAPTERS[LLMProvider(provider)]
    except (KeyError, ValueError) as e:
        raise ConfigurationError(f"Unknown LLM provider: {provider}") from e
    return builder(client=client)


def available_providers() -> list[dict[str, Any]]:
    return [
        {
            "id": provider.value,
            "name": provider.display_name,
            "description": provider.description,
            "requires_api_key": provider.requires_api_key,
        }
        for provider in LLMProvider
    ]
