"""OpenAI chat-completions adapter."""

from __future__ import annotations

import logging
from typing import Any, Iterator

import httpx

from .base import (
    LLMAdapter,
    LLMConfig,
    LLMProvider,
    LLMRequest,
    LLMResponse,
    build_chat_messages,
    decode_chunk,
    iter_sse_data,
)

logger = logging.getLogger(__name__)

OPENAI_MODELS_URL = "https://api.openai.com/v1/models"


def parse_chat_completion(data: dict[str, Any]) -> LLMResponse:
    choice = data["choices"][0]
    usage = data.get("usage") or {}
    return LLMResponse(
        content=choice["message"].get("content") or "",
        prompt_tokens=usage.get("prompt_tokens", 0),
        completion_tokens=usage.get("completion_tokens", 0),
        finish_reason=choice.get("finish_reason"),
    )


def iter_chat_completion_deltas(lines: Iterator[str]) -> Iterator[str]:
    """Deltas from an OpenAI-style SSE stream."""
    for payload in iter_sse_data(lines):
        data = decode_chunk(payload)
        if data is None:
            continue
        try:
            delta = data["choices"][0]["delta"].get("content")
        except (KeyError, IndexError, TypeError, AttributeError):
            continue
        if delta:
            yield delta


class OpenAIAdapter(LLMAdapter):
    provider = LLMProvider.OPENAI

    def _headers(self, config: LLMConfig) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {config.api_key}",
        }

    def _payload(self, request: LLMRequest, config: LLMConfig, stream: bool) -> dict[str, Any]:
        return {
            "model": config.model,
            "messages": build_chat_messages(request),
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "stream": stream,
        }

    def _parse_response(self, data: dict[str, Any]) -> LLMResponse:
        return parse_chat_completion(data)

    def _iter_deltas(self, lines: Iterator[str]) -> Iterator[str]:
        return iter_chat_completion_deltas(lines)

    def validate_api_key(self, api_key: str) -> bool:
        try:
            response = self.client.get(
                OPENAI_MODELS_URL,
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=10,
            )
        except httpx.HTTPError as e:
            logger.warning(f"OpenAI key validation failed: {e}")
            return False
        return response.status_code == 200
