"""Summarizer backends used for insight extraction and model re-evaluation."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from cam.config import Settings
from cam.errors import SummarizerError, ValidationError

logger = logging.getLogger(__name__)


class Summarizer(Protocol):
    """Text-in, text-out completion backend."""

    def complete(self, prompt: str, system: str | None = None) -> str: ...


class AnthropicSummarizer:
    """Anthropic Messages API summarizer (requires the ``llm`` extra)."""

    def __init__(self, settings: Settings) -> None:
        if not settings.llm_api_key:
            raise SummarizerError("CAM_LLM_API_KEY is not set")
        self._settings = settings
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import anthropic
            except ImportError:
                raise SummarizerError(
                    "anthropic package is required for the summarizer. "
                    "Install with: pip install 'cam-memory[llm]'"
                )
            self._client = anthropic.Anthropic(api_key=self._settings.llm_api_key)
        return self._client

    def complete(self, prompt: str, system: str | None = None) -> str:
        client = self._get_client()
        kwargs: dict[str, Any] = {
            "model": self._settings.llm_model,
            "max_tokens": self._settings.llm_max_tokens,
            "temperature": self._settings.llm_temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system
        try:
            message = client.messages.create(**kwargs)
        except Exception as e:
            raise SummarizerError(f"Summarizer call failed: {e}") from e

        if not message.content:
            raise SummarizerError("Summarizer returned an empty response")
        logger.debug(
            "Summarizer usage: %d in / %d out tokens",
            message.usage.input_tokens, message.usage.output_tokens,
        )
        return message.content[0].text


def parse_json_response(raw: str) -> Any:
    """Parse JSON from a summarizer response, tolerating markdown fences."""
    text = (raw or "").strip()
    if text.startswith("```"):
        # Strip markdown code fence
        lines = text.split("\n")
        lines = lines[1:]  # skip opening ```json or ```
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Malformed summarizer response: {e}") from e


def build_summarizer(settings: Settings) -> Summarizer | None:
    """Anthropic summarizer when a key is configured, otherwise None."""
    if not settings.llm_api_key:
        logger.info("No LLM key configured; extraction and model re-evaluation disabled")
        return None
    return AnthropicSummarizer(settings)
