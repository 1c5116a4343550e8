"""Structured-extraction collaborator backed by the Anthropic Messages API."""
from __future__ import annotations

import abc
from typing import Dict, Optional

import anthropic

from .errors import ExtractionServiceError
from .extract import build_prompt, parse_fields


class StructuredExtractor(abc.ABC):
    @abc.abstractmethod
    def extract(self, text: str) -> Dict[str, str]:
        """Map raw invoice text onto the ten schema fields.

        Raises ExtractionServiceError on transport failures and malformed
        replies.
        """


class AnthropicExtractor(StructuredExtractor):
    def __init__(self, api_key: str = "", model: str = "claude-3-5-haiku-latest", max_tokens: int = 1024, client=None):
        self.model = model
        self.max_tokens = max_tokens
        if client is None and api_key:
            client = anthropic.Anthropic(api_key=api_key)
        self.client: Optional[anthropic.Anthropic] = client

    def extract(self, text: str) -> Dict[str, str]:
        if self.client is None:
            raise ExtractionServiceError("Extraction service is not configured")
        try:
            message = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": build_prompt(text)}],
            )
        except anthropic.APIError as exc:
            raise ExtractionServiceError(f"Extraction service error: {exc}") from exc

        reply = "".join(block.text for block in message.content if getattr(block, "type", "") == "text")
        return parse_fields(reply)
