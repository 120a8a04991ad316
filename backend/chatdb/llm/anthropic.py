"""Anthropic Messages API adapter."""

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
    decode_chunk,
    iter_sse_data,
)

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
VALIDATION_MODEL = "claude-3-haiku-20240307"


class AnthropicAdapter(LLMAdapter):
    provider = LLMProvider.ANTHROPIC

    @staticmethod
    def _auth_headers(api_key: str | None) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def _headers(self, config: LLMConfig) -> dict[str, str]:
        return self._auth_headers(config.api_key)

    def _payload(self, request: LLMRequest, config: LLMConfig, stream: bool) -> dict[str, Any]:
        # The system prompt is a top-level field; messages carry only user/assistant turns
        messages = [
            {"role": m["role"], "content": m["content"]}
            for m in request.conversation_history
            if m.get("role") in ("user", "assistant")
        ]
        messages.append({"role": "user", "content": request.user_prompt})
        return {
            "model": config.model,
            "max_tokens": config.max_tokens,
            "system": request.system_prompt,
            "messages": messages,
            "temperature": config.temperature,
            "stream": stream,
        }

    def _parse_response(self, data: dict[str, Any]) -> LLMResponse:
        blocks = data["content"]
        text = "".join(block.get("text", "") for block in blocks if block.get("type") == "text")
        usage = data.get("usage") or {}
        return LLMResponse(
            content=text,
            prompt_tokens=usage.get("input_tokens", 0),
            completion_tokens=usage.get("output_tokens", 0),
            finish_reason=data.get("stop_reason"),
        )

    def _iter_deltas(self, lines: Iterator[str]) -> Iterator[str]:
        for payload in iter_sse_data(lines):
            data = decode_chunk(payload)
            if data is None:
                continue
            event_type = data.get("type")
            if event_type == "message_stop":
                return
            if event_type != "content_block_delta":
                continue
            delta = data.get("delta")
            text = delta.get("text") if isinstance(delta, dict) else None
            if text:
                yield text

    def validate_api_key(self, api_key: str) -> bool:
        try:
            response = self.client.post(
                LLMProvider.ANTHROPIC.default_endpoint,
                headers=self._auth_headers(api_key),
                json={
                    "model": VALIDATION_MODEL,
                    "max_tokens": 10,
                    "messages": [{"role": "user", "content": "Hi"}],
                },
                timeout=10,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Anthropic key validation failed: {e}")
            return False
        return response.status_code == 200
