"""Final synthesis step (MARY-4).

The arbiter hands every judgment, the preliminary consensus, the portfolio
snapshot and the historical context to one high-capability model and asks
for a single structured decision.

Fallback contract:
    - delegate raises or times out      -> preliminary decision, strength WEAK
    - reply unparsable or invalid       -> preliminary decision, strength kept
    - no valid judgments at all         -> HOLD / WEAK / 0.0, no delegate call
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Final

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from magi_core.agents.parsing import Unparsed, extract_structured_block
from magi_core.agents.protocol import ConsensusDecision, DecisionSource, OrderParams
from magi_core.common.types import ConsensusStrength, TradeAction

if TYPE_CHECKING:
    from collections.abc import Sequence

    from magi_core.agents.consensus import PreliminaryConsensus
    from magi_core.agents.protocol import HistoricalContext, Judgment, PortfolioSnapshot
    from magi_core.common.types import InstrumentId
    from magi_core.llm.base import CompletionClient

log = structlog.get_logger()

# ==============================================================================
# Constants
# ==============================================================================
ARBITER_UNIT_ID: Final[str] = "MARY-4"
DEFAULT_ARBITER_TIMEOUT_SECONDS: Final[float] = 60.0
NO_VALID_JUDGMENTS: Final[str] = "No valid judgments"

SYSTEM_PROMPT: Final[str] = """You are MARY-4, the integration and arbitration unit of the MAGI system.
Combine the analysis of every unit into one final investment decision.

Decision criteria:
1. Majority vote (3 of 4 or more is a strong signal)
2. Confidence weighting
3. Risk first (give SELL signals priority consideration)

Respond with exactly one JSON object:
{
  "final_decision": "BUY" | "HOLD" | "SELL",
  "consensus_strength": "STRONG" | "MODERATE" | "WEAK",
  "confidence": 0.0-1.0,
  "order_params": {"symbol": "...", "qty": 10, "side": "buy|sell", "stop_loss": ..., "take_profit": ...},
  "risk_warnings": [...],
  "reasoning": "..."
}"""


class ArbiterVerdict(BaseModel):
    """Shape the arbiter model must reply with."""

    model_config = ConfigDict(frozen=True)

    final_decision: TradeAction
    consensus_strength: ConsensusStrength
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    order_params: OrderParams | None = None
    risk_warnings: list[str] = Field(default_factory=list)
    reasoning: str = ""

    @field_validator("final_decision", "consensus_strength", mode="before")
    @classmethod
    def upper_label(cls, v: object) -> object:
        return v.strip().upper() if isinstance(v, str) else v


def empty_decision() -> ConsensusDecision:
    """Decision used when no agent produced a valid judgment."""
    return ConsensusDecision(
        final_signal=TradeAction.HOLD,
        strength=ConsensusStrength.WEAK,
        confidence=0.0,
        risk_warnings=["No analysis unit produced a valid judgment"],
        reasoning=NO_VALID_JUDGMENTS,
        source=DecisionSource.EMPTY,
    )


class Arbiter:
    """Delegate final synthesis, falling back to the preliminary consensus.

    Attributes:
        client: Completion client of the arbiter model; None means the
            arbiter is unavailable and every call takes the failure path.
        timeout_seconds: Time budget for the delegate call.
    """

    def __init__(
        self,
        client: CompletionClient | None,
        *,
        timeout_seconds: float = DEFAULT_ARBITER_TIMEOUT_SECONDS,
        take_profit_pct: float = 5.0,
        stop_loss_pct: float = 3.0,
    ) -> None:
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.take_profit_pct = take_profit_pct
        self.stop_loss_pct = stop_loss_pct

    def build_prompt(
        self,
        instrument: InstrumentId,
        judgments: Sequence[Judgment],
        preliminary: PreliminaryConsensus,
        portfolio: PortfolioSnapshot | None,
        history: HistoricalContext | None,
    ) -> str:
        lines = [f"## Instrument: {instrument}", "", "## Unit judgments:"]
        for j in judgments:
            confidence = "N/A" if j.confidence is None else f"{j.confidence:.2f}"
            status = f" [FAILED: {j.error}]" if j.error else ""
            lines.append(f"- {j.unit_id}: {j.signal.value} (confidence: {confidence}){status}")
            lines.append(f"  reasoning: {j.reasoning or 'N/A'}")

        lines += [
            "",
            "## Preliminary analysis:",
            f"- provisional decision: {preliminary.decision.value}",
            f"- consensus strength: {preliminary.strength.value}",
            f"- average confidence: {preliminary.avg_confidence:.2f}",
            f"- vote ratio: {preliminary.ratio:.2f}",
        ]

        if portfolio is not None:
            lines += ["", f"## Portfolio: cash ${portfolio.account.cash:,.2f}"]
            held = [p for p in portfolio.positions if p.symbol == instrument]
            for p in held:
                lines.append(f"- holding {p.qty:g} @ {p.avg_entry_price:.2f} (P/L {p.unrealized_pl:.2f})")

        if history is not None and history.document_count:
            lines += ["", f"## Historical context: {history.summary}"]

        lines += [
            "",
            f"Order guidance: take profit at +{self.take_profit_pct:g}%, "
            f"stop loss at -{self.stop_loss_pct:g}%.",
            "Output the final investment decision as JSON.",
        ]
        return "\n".join(lines)

    async def arbitrate(
        self,
        instrument: InstrumentId,
        judgments: Sequence[Judgment],
        preliminary: PreliminaryConsensus | None,
        portfolio: PortfolioSnapshot | None = None,
        history: HistoricalContext | None = None,
    ) -> ConsensusDecision:
        """Produce the final decision. Never raises.

        Args:
            instrument: Instrument under analysis.
            judgments: All judgments, failed ones included.
            preliminary: Output of the consensus engine (None when empty).
            portfolio: Optional portfolio snapshot.
            history: Optional historical context.

        Returns:
            ConsensusDecision whose ``source`` records the path taken.
        """
        if preliminary is None:
            return empty_decision()

        if self.client is None:
            log.warning("Arbiter unavailable, using preliminary consensus", instrument=instrument)
            return preliminary.to_decision(
                strength=ConsensusStrength.WEAK,
                source=DecisionSource.FALLBACK,
                error="arbiter not configured",
            )

        prompt = self.build_prompt(instrument, judgments, preliminary, portfolio, history)
        try:
            text = await asyncio.wait_for(
                self.client.complete(system=SYSTEM_PROMPT, prompt=prompt),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            log.warning("Arbiter timed out", instrument=instrument, timeout=self.timeout_seconds)
            return preliminary.to_decision(
                strength=ConsensusStrength.WEAK,
                source=DecisionSource.FALLBACK,
                error=f"timeout after {self.timeout_seconds}s",
            )
        except Exception as e:
            log.error("Arbiter failed", instrument=instrument, error=str(e), exc_info=True)
            return preliminary.to_decision(
                strength=ConsensusStrength.WEAK,
                source=DecisionSource.FALLBACK,
                error=str(e) or type(e).__name__,
            )

        extraction = extract_structured_block(text)
        if isinstance(extraction, Unparsed):
            log.warning("Arbiter output unparsed", instrument=instrument, reason=extraction.reason)
            return preliminary.to_decision(reasoning=text or "")

        try:
            verdict = ArbiterVerdict.model_validate(extraction.payload)
        except ValidationError as e:
            log.warning(
                "Arbiter output invalid",
                instrument=instrument,
                errors=e.error_count(),
            )
            return preliminary.to_decision(reasoning=text or "")

        decision = ConsensusDecision(
            final_signal=verdict.final_decision,
            strength=verdict.consensus_strength,
            confidence=(
                verdict.confidence
                if verdict.confidence is not None
                else preliminary.avg_confidence
            ),
            order_params=verdict.order_params,
            risk_warnings=verdict.risk_warnings,
            reasoning=verdict.reasoning,
            source=DecisionSource.ARBITER,
        )
        log.info(
            "Arbiter decided",
            instrument=instrument,
            signal=decision.final_signal.value,
            strength=decision.strength.value,
        )
        return decision
