"""Base analysis agent implementations.

This module provides the template every voting unit follows: consult the
underlying model, then convert its free text into a Judgment. The template
never raises. Transport errors and timeouts become a degraded Judgment,
unparsable output becomes a HOLD Judgment carrying the raw text.

Design Principles:
- Agents are stateless between requests (safe to run concurrently)
- Configuration via __init__ parameters (built once from settings)
- Async-first for non-blocking execution
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Final

import structlog

from magi_core.agents.parsing import Parsed, extract_structured_block
from magi_core.agents.protocol import Judgment
from magi_core.common.types import DEFAULT_MISSING_CONFIDENCE, TradeAction

if TYPE_CHECKING:
    from magi_core.common.types import InstrumentId
    from magi_core.llm.base import CompletionClient

log = structlog.get_logger()

# ==============================================================================
# Constants
# ==============================================================================
DEFAULT_AGENT_TIMEOUT_SECONDS: Final[float] = 90.0
RAW_REASONING_LIMIT: Final[int] = 500

JSON_OUTPUT_CONTRACT: Final[str] = (
    "Respond with exactly one JSON object and nothing else:\n"
    '{{"unit": "{unit}", "signal": "BUY" | "HOLD" | "SELL", '
    '"confidence": 0.0-1.0, "analysis": {analysis}, "reasoning": "..."}}'
)


# ==============================================================================
# Judgment Conversion
# ==============================================================================
def _coerce_confidence(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return None
    if confidence != confidence:  # NaN
        return None
    return min(1.0, max(0.0, confidence))


def judgment_from_text(unit_id: str, text: str | None) -> Judgment:
    """Convert a model's free-text reply into a Judgment.

    Never raises. The unit id of the adapter always wins over the one the
    model wrote. Any reply without a usable object, or with a signal outside
    BUY/HOLD/SELL, becomes HOLD at the default confidence with the raw text
    (truncated) as reasoning.

    Args:
        unit_id: Identifier of the producing agent.
        text: Raw model output.

    Returns:
        Judgment.
    """
    raw = text or ""
    extraction = extract_structured_block(raw)

    signal: TradeAction | None = None
    if isinstance(extraction, Parsed):
        payload = extraction.payload
        signal = TradeAction.parse(payload.get("signal"))

    if not isinstance(extraction, Parsed) or signal is None:
        log.warning(
            "Unit output unparsed",
            unit=unit_id,
            reason=getattr(extraction, "reason", "invalid signal"),
        )
        return Judgment(
            unit_id=unit_id,
            signal=TradeAction.HOLD,
            confidence=DEFAULT_MISSING_CONFIDENCE,
            reasoning=raw[:RAW_REASONING_LIMIT],
        )

    analysis = payload.get("analysis")
    if analysis is None:
        analysis = {}
    elif not isinstance(analysis, dict):
        analysis = {"value": analysis}

    reasoning = payload.get("reasoning")
    return Judgment(
        unit_id=unit_id,
        signal=signal,
        confidence=_coerce_confidence(payload.get("confidence")),
        analysis=analysis,
        reasoning="" if reasoning is None else str(reasoning),
    )


# ==============================================================================
# Base Analysis Agent
# ==============================================================================
class BaseAnalysisAgent:
    """Base class for voting analysis units.

    Template method: ``judge()`` wraps ``_consult()`` with a timeout, error
    isolation and output conversion. Subclasses implement ``_consult()``
    only.

    Attributes:
        unit_id: Unique agent identifier (e.g., "B2").
        timeout_seconds: Per-call time budget.
    """

    def __init__(
        self,
        unit_id: str,
        timeout_seconds: float = DEFAULT_AGENT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the agent.

        Args:
            unit_id: Identifier reported in every Judgment.
            timeout_seconds: Time budget for one consultation.
        """
        self.unit_id = unit_id
        self.timeout_seconds = timeout_seconds

    async def judge(
        self,
        instrument: InstrumentId,
        company_name: str,
        context: str = "",
    ) -> Judgment:
        """Produce a Judgment. Never raises.

        Args:
            instrument: The instrument being analysed.
            company_name: Company name for prompts.
            context: Extra free-text context.

        Returns:
            Judgment (degraded on failure).
        """
        try:
            text = await asyncio.wait_for(
                self._consult(instrument, company_name, context),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            log.warning("Unit timed out", unit=self.unit_id, timeout=self.timeout_seconds)
            return Judgment.failed(self.unit_id, f"timeout after {self.timeout_seconds}s")
        except Exception as e:
            log.error(
                "Unit analysis failed",
                unit=self.unit_id,
                error=str(e),
                exc_info=True,
            )
            return Judgment.failed(self.unit_id, str(e) or type(e).__name__)

        judgment = judgment_from_text(self.unit_id, text)
        log.info(
            "Unit judged",
            unit=self.unit_id,
            signal=judgment.signal.value,
            confidence=judgment.confidence,
        )
        return judgment

    async def _consult(
        self,
        instrument: InstrumentId,
        company_name: str,
        context: str,
    ) -> str:
        """Ask the underlying model. Override in subclasses.

        Returns:
            The model's raw text reply.
        """
        raise NotImplementedError("Subclasses must implement _consult()")


# ==============================================================================
# Prompted Agent (single completion)
# ==============================================================================
class PromptedAgent(BaseAnalysisAgent):
    """Agent answered by one system + user completion.

    Subclasses set ``system_prompt`` and implement ``build_prompt()``.
    """

    system_prompt: str = ""

    def __init__(
        self,
        unit_id: str,
        client: CompletionClient,
        timeout_seconds: float = DEFAULT_AGENT_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(unit_id=unit_id, timeout_seconds=timeout_seconds)
        self.client = client

    def build_prompt(self, instrument: InstrumentId, company_name: str, context: str) -> str:
        raise NotImplementedError("Subclasses must implement build_prompt()")

    async def _consult(
        self,
        instrument: InstrumentId,
        company_name: str,
        context: str,
    ) -> str:
        return await self.client.complete(
            system=self.system_prompt,
            prompt=self.build_prompt(instrument, company_name, context),
        )
