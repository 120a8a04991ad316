"""Adapter for local inference servers: Ollama, LM Studio and llama.cpp.

One class covers all three; the server flavour is fixed at construction and
selects the request body, response shape and stream framing.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator, Optional

import httpx

from .base import (
    LOCAL_PROVIDERS,
    LLMAdapter,
    LLMConfig,
    LLMProvider,
    LLMRequest,
    LLMResponse,
    build_chat_messages,
    build_completion_prompt,
    decode_chunk,
)
from .openai import iter_chat_completion_deltas, parse_chat_completion

logger = logging.getLogger(__name__)

HEALTH_PATHS = {
    LLMProvider.OLLAMA: "/api/tags",
    LLMProvider.LMSTUDIO: "/v1/models",
    LLMProvider.LLAMACPP: "/health",
}

PROBE_TIMEOUT = 5.0


class LocalAdapter(LLMAdapter):
    def __init__(self, server_type: LLMProvider = LLMProvider.OLLAMA, client: Optional[httpx.Client] = None):
        server_type = LLMProvider(server_type)
        if server_type not in LOCAL_PROVIDERS:
            raise ValueError(f"{server_type.value} is not a local server type")
        super().__init__(client=client)
        self.provider = server_type

    @property
    def server_type(self) -> LLMProvider:
        return self.provider

    def _headers(self, config: LLMConfig) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _payload(self, request: LLMRequest, config: LLMConfig, stream: bool) -> dict[str, Any]:
        if self.provider == LLMProvider.OLLAMA:
            return {
                "model": config.model,
                "prompt": build_completion_prompt(request),
                "stream": stream,
                "options": {
                    "temperature": config.temperature,
                    "num_predict": config.max_tokens,
                },
            }
        if self.provider == LLMProvider.LMSTUDIO:
            return {
                "model": config.model,
                "messages": build_chat_messages(request),
                "temperature": config.temperature,
                "max_tokens": config.max_tokens,
                "stream": stream,
            }
        return {
            "prompt": build_completion_prompt(request),
            "temperature": config.temperature,
            "n_predict": config.max_tokens,
            "stream": stream,
        }

    def _parse_response(self, data: dict[str, Any]) -> LLMResponse:
        if self.provider == LLMProvider.OLLAMA:
            return LLMResponse(
                content=data["response"],
                prompt_tokens=data.get("prompt_eval_count", 0),
                completion_tokens=data.get("eval_count", 0),
                finish_reason=data.get("done_reason") or ("stop" if data.get("done") else None),
            )
        if self.provider == LLMProvider.LMSTUDIO:
            return parse_chat_completion(data)
        return LLMResponse(
            content=data["content"],
            prompt_tokens=data.get("tokens_evaluated", 0),
            completion_tokens=data.get("tokens_predicted", 0),
            finish_reason="stop" if data.get("stop") else None,
        )

    def _iter_deltas(self, lines: Iterator[str]) -> Iterator[str]:
        if self.provider == LLMProvider.LMSTUDIO:
            return iter_chat_completion_deltas(lines)
        if self.provider == LLMProvider.OLLAMA:
            return self._iter_ollama(lines)
        return self._iter_llamacpp(lines)

    @staticmethod
    def _iter_ollama(lines: Iterator[str]) -> Iterator[str]:
        """Newline-delimited JSON: ``{"response": "...", "done": false}``."""
        for line in lines:
            if not line.strip():
                continue
            data = decode_chunk(line)
            if data is None:
                continue
            text = data.get("response")
            if text:
                yield text
            if data.get("done"):
                return

    @staticmethod
    def _iter_llamacpp(lines: Iterator[str]) -> Iterator[str]:
        """JSON lines with an optional ``data:`` prefix: ``{"content": "...", "stop": false}``."""
        for line in lines:
            line = line.strip()
            if line.startswith("data:"):
                line = line[len("data:"):].strip()
            if not line:
                continue
            if line == "[DONE]":
                return
            data = decode_chunk(line)
            if data is None:
                continue
            text = data.get("content")
            if text:
                yield text
            if data.get("stop"):
                return

    def _server_url(self, path: str) -> str:
        endpoint = self.config.effective_endpoint if self.config else self.provider.default_endpoint
        return str(httpx.URL(endpoint).copy_with(path=path))

    def is_server_available(self) -> bool:
        """Reachability check. Any failure counts as unavailable."""
        try:
            response = self.client.get(self._server_url(HEALTH_PATHS[self.provider]), timeout=PROBE_TIMEOUT)
        except httpx.HTTPError as e:
            logger.debug(f"{self.provider_name} server not reachable: {e}")
            return False
        return response.status_code == 200

    def list_ollama_models(self) -> list[str]:
        """Models installed on the Ollama server; empty for other flavours or on error."""
        if self.provider != LLMProvider.OLLAMA:
            return []
        try:
            response = self.client.get(self._server_url("/api/tags"), timeout=PROBE_TIMEOUT)
            response.raise_for_status()
            models = response.json().get("models") or []
            return [m["name"] for m in models if isinstance(m, dict) and "name" in m]
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.error(f"Failed to list Ollama models: {e}")
            return []

    @property
    def available_models(self) -> list[str]:
        if self.provider == LLMProvider.OLLAMA:
            return ["llama3", "llama2", "codellama", "mistral", "mixtral", "phi", "gemma"]
        return self.provider.default_models
