"""Bounded request/respond loop for tool-calling models.

States:
    REQUESTING          -> send the conversation to the model
    TOOL_CALLS_PENDING  -> execute every requested call, append results,
                           go back to REQUESTING
    ANSWERED            -> the model replied without tool calls (terminal)

At most ``max_rounds`` model requests are made. When the bound is hit while
calls are still pending, the last assistant message is returned unmodified
and the caller parses it like any other reply.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Final

import structlog

if TYPE_CHECKING:
    from magi_core.llm.base import AssistantMessage, ToolCall, ToolChatModel
    from magi_core.tools.registry import ToolRegistry

log = structlog.get_logger()

DEFAULT_MAX_ROUNDS: Final[int] = 3


class LoopState(str, Enum):
    REQUESTING = "requesting"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    ANSWERED = "answered"


@dataclass
class ToolLoopOutcome:
    """Result of one loop run.

    Attributes:
        message: Last assistant message received.
        rounds: Number of model requests made.
        answered: False when the bound was reached with calls still pending.
        transcript: Full conversation, including tool results.
    """

    message: AssistantMessage
    rounds: int
    answered: bool
    transcript: list[dict[str, Any]] = field(default_factory=list)


class ToolLoopRunner:
    """Drive a ToolChatModel through tool calls until it answers.

    Model errors propagate to the caller. Tool errors are recorded in the
    conversation as ``{"error": ...}`` results for that call only.
    """

    def __init__(
        self,
        model: ToolChatModel,
        registry: ToolRegistry,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
    ) -> None:
        if max_rounds < 1:
            msg = "max_rounds must be at least 1"
            raise ValueError(msg)
        self.model = model
        self.registry = registry
        self.max_rounds = max_rounds

    async def _resolve(self, call: ToolCall) -> dict[str, Any]:
        try:
            content = await self.registry.execute(call.name, call.arguments)
        except Exception as e:
            log.warning("Tool call failed", tool=call.name, error=str(e))
            content = json.dumps({"error": str(e)})
        return {
            "role": "tool",
            "tool_call_id": call.id,
            "name": call.name,
            "content": content,
        }

    async def run(self, messages: list[dict[str, Any]]) -> ToolLoopOutcome:
        """Run the loop on a copy of ``messages``.

        Args:
            messages: Initial conversation (system + user).

        Returns:
            ToolLoopOutcome with the last assistant message.
        """
        transcript = list(messages)
        tools = self.registry.definitions()
        state = LoopState.REQUESTING
        rounds = 0
        message: AssistantMessage | None = None

        while True:
            if state is LoopState.REQUESTING:
                message = await self.model.chat(transcript, tools)
                rounds += 1
                transcript.append(message.to_message())
                state = (
                    LoopState.TOOL_CALLS_PENDING if message.tool_calls else LoopState.ANSWERED
                )
            elif state is LoopState.TOOL_CALLS_PENDING:
                if rounds >= self.max_rounds:
                    log.warning(
                        "Tool loop bound reached",
                        rounds=rounds,
                        pending=[c.name for c in message.tool_calls],
                    )
                    return ToolLoopOutcome(
                        message=message, rounds=rounds, answered=False, transcript=transcript
                    )
                for call in message.tool_calls:
                    transcript.append(await self._resolve(call))
                state = LoopState.REQUESTING
            else:
                log.debug("Tool loop answered", rounds=rounds)
                return ToolLoopOutcome(
                    message=message, rounds=rounds, answered=True, transcript=transcript
                )
