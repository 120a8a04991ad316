"""Perplexity adapter. The API is OpenAI-compatible."""

from __future__ import annotations

import logging

import httpx

from .base import LLMProvider
from .openai import OpenAIAdapter

logger = logging.getLogger(__name__)

VALIDATION_MODEL = "sonar"


class PerplexityAdapter(OpenAIAdapter):
    provider = LLMProvider.PERPLEXITY

    def validate_api_key(self, api_key: str) -> bool:
        try:
            response = self.client.post(
                LLMProvider.PERPLEXITY.default_endpoint,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {api_key}",
                },
                json={
                    "model": VALIDATION_MODEL,
                    "messages": [{"role": "user", "content": "Hi"}],
                    "max_tokens": 10,
                },
                timeout=10,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Perplexity key validation failed: {e}")
            return False
        return response.status_code == 200
