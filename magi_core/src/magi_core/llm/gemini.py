"""Gemini REST client with Google Search grounding.

Endpoint pattern (v1beta):
    https://generativelanguage.googleapis.com/v1beta/models/<model>:generateContent
"""

from __future__ import annotations

from typing import Any, Final
from urllib.parse import quote

import httpx
import structlog

from magi_core.llm.base import LLMClientError

log = structlog.get_logger()

GEMINI_BASE_URL: Final[str] = "https://generativelanguage.googleapis.com/v1beta"


class GeminiClient:
    """Completion client for ``models/<model>:generateContent``.

    Attributes:
        model: Gemini model identifier.
        google_search: Whether to enable search grounding.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        google_search: bool = True,
        temperature: float = 0.7,
        max_output_tokens: int = 2048,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.google_search = google_search
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _build_payload(self, system: str | None, prompt: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
            },
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        if self.google_search:
            payload["tools"] = [{"google_search": {}}]
        return payload

    async def complete(self, *, system: str | None, prompt: str) -> str:
        """Run one generateContent call and return the joined text parts."""
        url = f"{GEMINI_BASE_URL}/models/{quote(self.model)}:generateContent"
        headers = {"Content-Type": "application/json", "x-goog-api-key": self.api_key}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    url,
                    json=self._build_payload(system, prompt),
                    headers=headers,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            log.error(
                "Gemini request rejected",
                status=exc.response.status_code,
                body=exc.response.text[:500],
            )
            raise LLMClientError(
                f"HTTP {exc.response.status_code}", provider="gemini"
            ) from exc
        except httpx.HTTPError as exc:
            raise LLMClientError(str(exc) or type(exc).__name__, provider="gemini") from exc

        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMClientError("unexpected response shape", provider="gemini") from exc

        return "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict))
