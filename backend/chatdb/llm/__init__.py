"""LLM interaction module.

Contains the provider-neutral adapter contract, the provider adapters and
prompt templates.
"""

from .anthropic import AnthropicAdapter
from .base import (
    CLOUD_PROVIDERS,
    LOCAL_PROVIDERS,
    LLMAdapter,
    LLMConfig,
    LLMProvider,
    LLMRequest,
    LLMResponse,
)
from .factory import ADAPTERS, available_providers, create_adapter
from .local import LocalAdapter
from .openai import OpenAIAdapter
from .perplexity import PerplexityAdapter
from .prompts import ASSISTANT_SYSTEM, MODELING_SUGGESTION, QUERY_VALIDATION

__all__ = [
    # Contract
    "CLOUD_PROVIDERS",
    "LOCAL_PROVIDERS",
    "LLMAdapter",
    "LLMConfig",
    "LLMProvider",
    "LLMRequest",
    "LLMResponse",
    # Adapters
    "AnthropicAdapter",
    "LocalAdapter",
    "OpenAIAdapter",
    "PerplexityAdapter",
    # Factory
    "ADAPTERS",
    "available_providers",
    "create_adapter",
    # Prompts
    "ASSISTANT_SYSTEM",
    "MODELING_SUGGESTION",
    "QUERY_VALIDATION",
]
