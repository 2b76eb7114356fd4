"""Unit R4: technical analysis driven by price and indicator tools (Mistral).

The model is given the tool registry and may fetch quotes and indicators
before answering. The loop is bounded; whatever the model said last is
parsed like any other unit's reply.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from magi_core.agents.base import (
    DEFAULT_AGENT_TIMEOUT_SECONDS,
    JSON_OUTPUT_CONTRACT,
    BaseAnalysisAgent,
)
from magi_core.agents.tool_loop import DEFAULT_MAX_ROUNDS, ToolLoopRunner

if TYPE_CHECKING:
    from magi_core.common.types import InstrumentId
    from magi_core.llm.base import ToolChatModel
    from magi_core.tools.registry import ToolRegistry


SYSTEM_PROMPT = (
    "You are Unit-R4 of the MAGI system, responsible for technical analysis. "
    "Analyse the share price and technical indicators and output an investment "
    "judgment.\n\n"
    + JSON_OUTPUT_CONTRACT.format(
        unit="R4",
        analysis='{"price": ..., "rsi": ..., "macd": "bullish|bearish", '
        '"trend": "upward|downward|sideways"}',
    )
)


class TechnicalAnalysisAgent(BaseAnalysisAgent):
    """Tool-using technical analyst.

    Attributes:
        runner: Bounded tool loop over the chat model and registry.
    """

    def __init__(
        self,
        unit_id: str,
        model: ToolChatModel,
        registry: ToolRegistry,
        *,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        timeout_seconds: float = DEFAULT_AGENT_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(unit_id=unit_id, timeout_seconds=timeout_seconds)
        self.runner = ToolLoopRunner(model=model, registry=registry, max_rounds=max_rounds)

    async def _consult(
        self,
        instrument: InstrumentId,
        company_name: str,
        context: str,
    ) -> str:
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Analyse {company_name} ({instrument}). Use get_stock_price and "
                    "get_technical_indicators, then output JSON only."
                    + (f"\n\nAdditional context: {context}" if context else "")
                ),
            },
        ]
        outcome = await self.runner.run(messages)
        return outcome.message.content
