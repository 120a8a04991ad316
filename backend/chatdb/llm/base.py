"""Provider-neutral LLM contract.

Every provider adapter turns a (system prompt, user prompt, history) request
into a completion, whole or streamed, over a synchronous ``httpx.Client``.
Streaming returns a lazy iterator; closing it closes the HTTP response.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
import json
import logging
import math
import time
from typing import Any, Iterable, Iterator, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from ..core.exceptions import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)


class LLMProvider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    PERPLEXITY = "perplexity"
    OLLAMA = "ollama"
    LMSTUDIO = "lmstudio"
    LLAMACPP = "llamacpp"

    @property
    def display_name(self) -> str:
        return _PROVIDER_INFO[self]["name"]

    @property
    def description(self) -> str:
        return _PROVIDER_INFO[self]["description"]

    @property
    def default_endpoint(self) -> str:
        return _PROVIDER_INFO[self]["endpoint"]

    @property
    def requires_api_key(self) -> bool:
        return self in CLOUD_PROVIDERS

    @property
    def is_local(self) -> bool:
        return self in LOCAL_PROVIDERS

    @property
    def default_models(self) -> list[str]:
        return list(_PROVIDER_INFO[self]["models"])

    @property
    def max_context_tokens(self) -> int:
        return _PROVIDER_INFO[self]["context"]

    @property
    def supports_reasoning(self) -> bool:
        # Local servers depend on whichever model is loaded
        return self in CLOUD_PROVIDERS


CLOUD_PROVIDERS = frozenset({LLMProvider.OPENAI, LLMProvider.ANTHROPIC, LLMProvider.PERPLEXITY})
LOCAL_PROVIDERS = frozenset({LLMProvider.OLLAMA, LLMProvider.LMSTUDIO, LLMProvider.LLAMACPP})

_PROVIDER_INFO: dict[LLMProvider, dict[str, Any]] = {
    LLMProvider.OPENAI: {
        "name": "OpenAI",
        "description": "GPT-4o, GPT-4 Turbo and other OpenAI models",
        "endpoint": "https://api.openai.com/v1/chat/completions",
        "models": ("gpt-4o", "gpt-4-turbo", "gpt-4", "gpt-3.5-turbo"),
        "context": 128000,
    },
    LLMProvider.ANTHROPIC: {
        "name": "Anthropic",
        "description": "Claude 3 Opus, Sonnet and Haiku",
        "endpoint": "https://api.anthropic.com/v1/messages",
        "models": ("claude-3-opus-20240229", "claude-3-sonnet-20240229", "claude-3-haiku-20240307"),
        "context": 200000,
    },
    LLMProvider.PERPLEXITY: {
        "name": "Perplexity",
        "description": "Search-optimised Sonar models",
        "endpoint": "https://api.perplexity.ai/chat/completions",
        "models": ("sonar-pro", "sonar", "sonar-reasoning-pro", "sonar-reasoning"),
        "context": 128000,
    },
    LLMProvider.OLLAMA: {
        "name": "Ollama (Local)",
        "description": "Run models locally with Ollama",
        "endpoint": "http://localhost:11434/api/generate",
        "models": ("llama3", "llama2", "codellama", "mistral", "mixtral"),
        "context": 32000,
    },
    LLMProvider.LMSTUDIO: {
        "name": "LM Studio",
        "description": "Desktop server for local models",
        "endpoint": "http://localhost:1234/v1/chat/completions",
        "models": ("local-model",),
        "context": 32000,
    },
    LLMProvider.LLAMACPP: {
        "name": "llama.cpp",
        "description": "llama.cpp server for local inference",
        "endpoint": "http://localhost:8080/completion",
        "models": ("local-model",),
        "context": 32000,
    },
}


class LLMConfig(BaseModel):
    """Provider selection and generation parameters. The API key is never serialised."""

    model_config = ConfigDict(frozen=True)

    provider: LLMProvider
    model: str
    api_key: Optional[str] = Field(default=None, repr=False, exclude=True)
    endpoint: Optional[str] = None
    temperature: float = 0.3
    max_tokens: int = 4096
    enable_reasoning: bool = False
    enable_streaming: bool = True
    timeout: float = 90.0

    @property
    def effective_endpoint(self) -> str:
        return self.endpoint or self.provider.default_endpoint

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)


@dataclass
class LLMRequest:
    system_prompt: str
    user_prompt: str
    conversation_history: list[dict[str, str]] = field(default_factory=list)
    config: Optional[LLMConfig] = None


@dataclass
class LLMResponse:
    content: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    finish_reason: Optional[str] = None
    latency: Optional[float] = None

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


def build_chat_messages(request: LLMRequest) -> list[dict[str, str]]:
    """OpenAI-style message list: system, prior turns, then the live question."""
    messages = [{"role": "system", "content": request.system_prompt}]
    messages.extend(request.conversation_history)
    messages.append({"role": "user", "content": request.user_prompt})
    return messages


def build_completion_prompt(request: LLMRequest) -> str:
    """Single prompt string for servers without a chat endpoint."""
    return f"{request.system_prompt}\n\nUser: {request.user_prompt}\n\nAssistant:"


def iter_sse_data(lines: Iterable[str]) -> Iterator[str]:
    """Yield the payload of each ``data:`` line until ``[DONE]``."""
    for line in lines:
        line = line.strip()
        if not line.startswith("data:"):
            continue
        payload = line[len("data:"):].strip()
        if payload == "[DONE]":
            return
        if payload:
            yield payload


def decode_chunk(text: str) -> dict[str, Any] | None:
    """Decode one stream chunk; malformed chunks yield None."""
    try:
        data = json.loads(text)
    except ValueError:
        logger.debug(f"Skipping malformed stream chunk: {text[:100]}")
        return None
    return data if isinstance(data, dict) else None


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if data.get("message"):
            return str(data["message"])
    return response.text[:500]


class LLMAdapter(ABC):
    """Base class for provider adapters.

    Subclasses describe the wire format: headers, request payload, response
    parsing and stream framing. HTTP transport, error mapping and latency
    measurement live here.
    """

    provider: LLMProvider
    supports_streaming = True

    def __init__(self, client: Optional[httpx.Client] = None):
        self._client = client
        self._owns_client = client is None
        self.config: Optional[LLMConfig] = None

    # --- Capabilities ---

    @property
    def provider_id(self) -> str:
        return self.provider.value

    @property
    def provider_name(self) -> str:
        return self.provider.display_name

    @property
    def max_context_tokens(self) -> int:
        return self.provider.max_context_tokens

    @property
    def supports_reasoning(self) -> bool:
        return self.provider.supports_reasoning

    @property
    def available_models(self) -> list[str]:
        return self.provider.default_models

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            timeout = self.config.timeout if self.config else 90.0
            self._client = httpx.Client(timeout=timeout)
            self._owns_client = True
        return self._client

    # --- Lifecycle ---

    def initialize(self, config: LLMConfig) -> None:
        """Store ``config``.

        Raises:
            ConfigurationError: If the provider requires an API key and none is set
        """
        if self.provider.requires_api_key and not config.api_key:
            raise ConfigurationError(f"{self.provider_name} requires an API key")
        self.config = config
        logger.info(f"Initialized {self.provider_name} adapter with model={config.model}")

    def dispose(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
        self._client = None
        self.config = None

    def _ensure_initialized(self) -> LLMConfig:
        if self.config is None:
            raise ConfigurationError(f"{self.provider_name} adapter is not initialized; call initialize() first")
        return self.config

    # --- Wire format ---

    @abstractmethod
    def _headers(self, config: LLMConfig) -> dict[str, str]:
        ...

    @abstractmethod
    def _payload(self, request: LLMRequest, config: LLMConfig, stream: bool) -> dict[str, Any]:
        ...

    @abstractmethod
    def _parse_response(self, data: dict[str, Any]) -> LLMResponse:
        """Map the provider's JSON body to an LLMResponse (latency unset)."""

    @abstractmethod
    def _iter_deltas(self, lines: Iterator[str]) -> Iterator[str]:
        """Turn raw response lines into text deltas, skipping malformed chunks."""

    # --- Calls ---

    def complete(self, request: LLMRequest) -> LLMResponse:
        """Blocking completion.

        Raises:
            ConfigurationError: If the adapter was not initialized
            ProviderError: On HTTP failure, timeout, or an unparseable response
        """
        config = self._ensure_initialized()
        payload = self._payload(request, config, stream=False)
        url = config.effective_endpoint

        logger.debug(f"Calling {self.provider_name} model={config.model} endpoint={url}")
        started = time.perf_counter()
        try:
            response = self.client.post(url, json=payload, headers=self._headers(config), timeout=config.timeout)
        except httpx.TimeoutException as e:
            logger.error(f"{self.provider_name} request timed out after {config.timeout}s")
            raise ProviderError(f"{self.provider_name} request timed out after {config.timeout}s") from e
        except httpx.HTTPError as e:
            logger.error(f"{self.provider_name} transport error: {e}")
            raise ProviderError(f"{self.provider_name} request failed: {e}") from e

        if not response.is_success:
            detail = _error_detail(response)
            logger.error(f"{self.provider_name} HTTP error: {response.status_code} - {detail[:200]}")
            raise ProviderError(
                f"{self.provider_name} API error ({response.status_code}): {detail}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Failed to parse {self.provider_name} response as JSON: {response.text[:200]}")
            raise ProviderError(f"{self.provider_name} returned invalid JSON", body=response.text) from e

        if not isinstance(data, dict):
            raise ProviderError(f"{self.provider_name} response is not a JSON object", body=response.text)

        try:
            result = self._parse_response(data)
        except (KeyError, IndexError, TypeError) as e:
            logger.error(f"Unexpected {self.provider_name} response shape: {str(data)[:200]}")
            raise ProviderError(f"{self.provider_name} returned a malformed response", body=response.text) from e

        latency = time.perf_counter() - started
        logger.info(
            f"{self.provider_name} completion: {len(result.content)} chars, "
            f"{result.total_tokens} tokens, {latency:.2f}s"
        )
        return replace(result, latency=latency)

    def stream_complete(self, request: LLMRequest) -> Iterator[str]:
        """Streaming completion as a lazy iterator of text deltas.

        Configuration errors are raised immediately; HTTP errors are raised
        on first iteration. Closing the iterator aborts the transfer.
        """
        config = self._ensure_initialized()
        payload = self._payload(request, config, stream=True)
        return self._stream(config, payload)

    def _stream(self, config: LLMConfig, payload: dict[str, Any]) -> Iterator[str]:
        url = config.effective_endpoint
        logger.debug(f"Streaming from {self.provider_name} model={config.model}")
        try:
            with self.client.stream(
                "POST", url, json=payload, headers=self._headers(config), timeout=config.timeout
            ) as response:
                if not response.is_success:
                    response.read()
                    detail = _error_detail(response)
                    logger.error(f"{self.provider_name} streaming HTTP error: {response.status_code}")
                    raise ProviderError(
                        f"{self.provider_name} API error ({response.status_code}): {detail}",
                        status_code=response.status_code,
                        body=response.text,
                    )
                yield from self._iter_deltas(response.iter_lines())
        except httpx.TimeoutException as e:
            logger.error(f"{self.provider_name} stream timed out after {config.timeout}s")
            raise ProviderError(f"{self.provider_name} stream timed out after {config.timeout}s") from e
        except httpx.HTTPError as e:
            logger.error(f"{self.provider_name} streaming transport error: {e}")
            raise ProviderError(f"{self.provider_name} stream failed: {e}") from e

    def validate_api_key(self, api_key: str) -> bool:
        """Cheap authenticated request; True iff it succeeds. Never raises."""
        return True

    def estimate_tokens(self, text: str) -> int:
        """Approximate token count at four characters per token."""
        return math.ceil(len(text) / 4)
