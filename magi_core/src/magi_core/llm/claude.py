"""Anthropic Messages client with the server-side web search tool."""

from __future__ import annotations

from typing import Any, Final

import anthropic
from anthropic import AsyncAnthropic

from magi_core.llm.base import LLMClientError

WEB_SEARCH_TOOL: Final[dict[str, Any]] = {
    "type": "web_search_20250305",
    "name": "web_search",
}


class ClaudeClient:
    """Completion client backed by ``AsyncAnthropic.messages.create``.

    Text blocks of the reply are concatenated; search result blocks are
    dropped since only the model's written answer is parsed downstream.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        max_tokens: int = 4096,
        web_search: bool = True,
        timeout_seconds: float = 120.0,
        client: AsyncAnthropic | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.web_search = web_search
        self.client = client or AsyncAnthropic(api_key=api_key, timeout=timeout_seconds)

    async def complete(self, *, system: str | None, prompt: str) -> str:
        """Run one message round and return the concatenated text."""
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system
        if self.web_search:
            kwargs["tools"] = [WEB_SEARCH_TOOL]

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.AnthropicError as exc:
            raise LLMClientError(str(exc), provider="anthropic") from exc

        return "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
