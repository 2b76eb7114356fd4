"""Provider-neutral contracts for language-model clients.

Two capabilities are used by the pipeline:

- ``CompletionClient``: one system + user prompt in, text out. Used by the
  prompted analysis units and by the arbiter.
- ``ToolChatModel``: a chat turn over an OpenAI-format conversation with
  function tools. Used by the tool loop of the technical unit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


# ==============================================================================
# Exceptions
# ==============================================================================
class LLMClientError(Exception):
    """Raised when a provider call fails (transport, HTTP status, shape)."""

    def __init__(self, message: str, provider: str | None = None) -> None:
        """Initialize LLMClientError.

        Args:
            message: Error description.
            provider: Provider that failed (optional).
        """
        self.provider = provider
        super().__init__(f"{provider} error: {message}" if provider else message)


# ==============================================================================
# Chat Messages
# ==============================================================================
@dataclass(frozen=True)
class ToolCall:
    """A function call requested by the model."""

    id: str  # noqa: A003
    name: str
    arguments: str = "{}"


@dataclass(frozen=True)
class AssistantMessage:
    """One reply received from a tool-capable chat model."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)

    def to_message(self) -> dict[str, Any]:
        """Render as an OpenAI-format conversation entry."""
        message: dict[str, Any] = {"role": "assistant", "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in self.tool_calls
            ]
        return message


# ==============================================================================
# Client Protocols
# ==============================================================================
@runtime_checkable
class CompletionClient(Protocol):
    """Single-shot prompt completion."""

    async def complete(self, *, system: str | None, prompt: str) -> str:
        """Return the model's text reply."""
        ...


@runtime_checkable
class ToolChatModel(Protocol):
    """Chat completion with function tools."""

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> AssistantMessage:
        """Send the conversation and return the next assistant message."""
        ...
