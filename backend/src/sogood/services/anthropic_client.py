"""Client for the Anthropic Messages API."""

import asyncio
import logging
from typing import Any, Sequence

import httpx
from pydantic import BaseModel

from sogood.config import Settings
from sogood_models import ChatTurn

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
ERROR_BODY_LIMIT = 2000


class CompletionResult(BaseModel):
    """Outcome of a completion request: text on success, error otherwise."""

    text: str | None = None
    error: str | None = None
    status_code: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def extract_text(content: Any) -> str:
    """Concatenate the `text` blocks of a Messages API response."""
    if not isinstance(content, list):
        return ""
    parts = []
    for block in content:
        if isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text") or ""))
    return "".join(parts)


class AnthropicClient:
    """HTTP client for Anthropic completions with a hard timeout."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self._transport = transport

    @property
    def timeout_ms(self) -> int:
        return self.settings.anthropic_timeout_ms

    async def complete(
        self,
        system: str,
        turns: Sequence[ChatTurn],
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> CompletionResult:
        """
        Request a completion.

        Args:
            system: System prompt text
            turns: Alternating user/assistant turns
            max_tokens: Output token cap (defaults to settings)
            temperature: Sampling temperature (defaults to settings)

        Returns:
            CompletionResult with text or a provider error

        Raises:
            ConfigurationError: if no API key is configured

        """
        self.settings.require_anthropic()

        payload = {
            "model": self.settings.anthropic_model,
            "max_tokens": max_tokens or self.settings.anthropic_max_tokens,
            "temperature": (
                self.settings.anthropic_temperature if temperature is None else temperature
            ),
            "system": system,
            "messages": [{"role": t.role, "content": t.content} for t in turns],
        }

        try:
            return await asyncio.wait_for(self._post(payload), timeout=self.timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.error(f"Anthropic request timed out after {self.timeout_ms}ms")
            return CompletionResult(error=f"Anthropic request timed out after {self.timeout_ms}ms")

    async def _post(self, payload: dict[str, Any]) -> CompletionResult:
        url = f"{self.settings.anthropic_base_url.rstrip('/')}/v1/messages"
        headers = {
            "content-type": "application/json",
            "x-api-key": self.settings.anthropic_api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

        # wait_for owns the deadline
        async with httpx.AsyncClient(timeout=None, transport=self._transport) as client:
            try:
                response = await client.post(url, headers=headers, json=payload)
            except httpx.RequestError as e:
                logger.error(f"Anthropic request error: {e}")
                return CompletionResult(error=f"Request failed: {str(e)}")

        if response.is_error:
            logger.error(f"Anthropic HTTP error: {response.status_code}")
            return CompletionResult(
                error=f"HTTP {response.status_code}: {response.text[:ERROR_BODY_LIMIT]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            logger.error("Anthropic returned malformed JSON")
            return CompletionResult(
                error=f"Malformed model response: {response.text[:ERROR_BODY_LIMIT]}",
                status_code=response.status_code,
            )

        text = extract_text(data.get("content") if isinstance(data, dict) else None)
        if not text.strip():
            return CompletionResult(error="Empty model response", status_code=response.status_code)
        return CompletionResult(text=text, status_code=response.status_code)
