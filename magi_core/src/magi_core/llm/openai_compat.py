"""OpenAI-compatible chat completions client.

The same wire format serves three providers:
- OpenAI (arbiter, default base URL)
- xAI Grok (social sentiment unit, ``https://api.x.ai/v1``)
- Mistral (technical unit with function tools, ``https://api.mistral.ai/v1``)
"""

from __future__ import annotations

from typing import Any, Final

import openai
from openai import AsyncOpenAI

from magi_core.llm.base import AssistantMessage, LLMClientError, ToolCall

# ==============================================================================
# Constants
# ==============================================================================
XAI_BASE_URL: Final[str] = "https://api.x.ai/v1"
MISTRAL_BASE_URL: Final[str] = "https://api.mistral.ai/v1"
DEFAULT_TIMEOUT_SECONDS: Final[float] = 60.0


class OpenAIChatClient:
    """Async chat completions client for OpenAI-compatible endpoints.

    Implements both ``CompletionClient`` and ``ToolChatModel``.

    Attributes:
        model: Model identifier sent with every request.
        provider: Label used in errors and logs.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        base_url: str | None = None,
        provider: str = "openai",
        temperature: float = 0.7,
        max_tokens: int = 2048,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Provider API key.
            model: Model identifier.
            base_url: Override for non-OpenAI providers.
            provider: Provider label for errors.
            temperature: Sampling temperature for completions.
            max_tokens: Completion token cap.
            timeout_seconds: HTTP timeout.
            client: Pre-built SDK client (tests).
        """
        self.model = model
        self.provider = provider
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout_seconds,
        )

    async def complete(self, *, system: str | None, prompt: str) -> str:
        """Run a single system + user completion."""
        messages: list[dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,  # type: ignore[arg-type]
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except openai.OpenAIError as exc:
            raise LLMClientError(str(exc), provider=self.provider) from exc

        if not response.choices:
            raise LLMClientError("response contained no choices", provider=self.provider)
        return response.choices[0].message.content or ""

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> AssistantMessage:
        """Run one tool-enabled chat turn."""
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,  # type: ignore[arg-type]
                tools=tools,  # type: ignore[arg-type]
                tool_choice="auto",
            )
        except openai.OpenAIError as exc:
            raise LLMClientError(str(exc), provider=self.provider) from exc

        if not response.choices:
            raise LLMClientError("response contained no choices", provider=self.provider)

        message = response.choices[0].message
        tool_calls = [
            ToolCall(
                id=call.id,
                name=call.function.name,
                arguments=call.function.arguments or "{}",
            )
            for call in (message.tool_calls or [])
        ]
        return AssistantMessage(content=message.content or "", tool_calls=tool_calls)
