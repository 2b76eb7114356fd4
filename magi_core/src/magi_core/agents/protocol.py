"""Agent communication protocols and message types.

This module defines the contract between agents and the decision pipeline.
All messages are immutable Pydantic models for type safety and serialization.

Message Flow:
    Instrument → AnalysisAgent (xN, parallel) → Judgment
    → ConsensusEngine → Arbiter → ConsensusDecision → AnalysisResult
    → UnanimityGate → TradeSignal → message bus
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import Field, field_validator

from magi_core.common.types import (
    ConsensusStrength,
    InstrumentId,
    TradeAction,
    WireModel,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==============================================================================
# Judgment (Output from Analysis Agents)
# ==============================================================================
class Judgment(WireModel):
    """One agent's opinion on one instrument at one point in time.

    A failed agent still produces a well-formed Judgment (HOLD, confidence 0,
    ``error`` set) so the pipeline never sees a missing result.

    Attributes:
        unit_id: Identifier of the producing agent (e.g., "R4").
        signal: Directional opinion.
        confidence: Confidence in [0, 1]; None when the agent did not report one.
        analysis: Agent-specific structured payload.
        reasoning: Free-text explanation.
        error: Failure description when the agent could not produce an opinion.
    """

    unit_id: str = Field(..., min_length=1, description="Agent identifier")
    signal: TradeAction = TradeAction.HOLD
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    analysis: dict[str, Any] = Field(default_factory=dict)
    reasoning: str = ""
    error: str | None = None

    @property
    def is_valid(self) -> bool:
        """True when the judgment is a real opinion rather than a failure stand-in."""
        return self.error is None

    @classmethod
    def failed(cls, unit_id: str, error: str) -> Judgment:
        """Build the degraded judgment used for any agent failure."""
        return cls(
            unit_id=unit_id,
            signal=TradeAction.HOLD,
            confidence=0.0,
            error=error,
        )


# ==============================================================================
# Collaborator Payloads
# ==============================================================================
class AccountSummary(WireModel):
    """Brokerage account balances."""

    cash: float
    portfolio_value: float
    equity: float
    buying_power: float


class PositionView(WireModel):
    """One open position in the brokerage account."""

    symbol: str
    qty: float
    avg_entry_price: float
    current_price: float
    unrealized_pl: float
    market_value: float


class PortfolioSnapshot(WireModel):
    """Current cash and positions, fetched best-effort per request."""

    account: AccountSummary
    positions: list[PositionView] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=_utc_now)

    @property
    def total_positions(self) -> int:
        return len(self.positions)


class HistoricalContext(WireModel):
    """Documents retrieved from the historical research index (ISABEL)."""

    documents: list[dict[str, Any]] = Field(default_factory=list)
    document_count: int = 0
    summary: str = ""


# ==============================================================================
# Consensus Decision (ConsensusEngine / Arbiter → caller)
# ==============================================================================
class DecisionSource(str, Enum):
    """Which path produced a ConsensusDecision.

    Attributes:
        ARBITER: Parsed output of the arbiter delegate.
        PRELIMINARY: Arbiter output unparsable; preliminary consensus kept as-is.
        FALLBACK: Arbiter call failed; preliminary consensus with WEAK strength.
        EMPTY: No valid judgments were available.
    """

    ARBITER = "arbiter"
    PRELIMINARY = "preliminary"
    FALLBACK = "fallback"
    EMPTY = "empty"


class OrderParams(WireModel):
    """Order proposed by the arbiter. Advisory only; never executed here."""

    symbol: str | None = None
    qty: float | None = Field(default=None, ge=0.0)
    side: str | None = None
    stop_loss: float | None = None
    take_profit: float | None = None


class ConsensusDecision(WireModel):
    """Final (or provisional) decision for one instrument.

    Attributes:
        final_signal: Decided action.
        strength: Agreement strength.
        confidence: Decision confidence in [0, 1].
        order_params: Optional proposed order.
        risk_warnings: Human-readable risk notes.
        reasoning: Explanation of the decision.
        source: Path that produced this decision.
        error: Arbiter failure description when ``source`` is FALLBACK.
    """

    final_signal: TradeAction
    strength: ConsensusStrength
    confidence: float = Field(..., ge=0.0, le=1.0)
    order_params: OrderParams | None = None
    risk_warnings: list[str] = Field(default_factory=list)
    reasoning: str = ""
    source: DecisionSource = DecisionSource.ARBITER
    error: str | None = None


# ==============================================================================
# Analysis Result (one per instrument per request)
# ==============================================================================
class AnalysisResult(WireModel):
    """Complete outcome of the pipeline for one instrument.

    ``judgments`` keeps dispatch order, not completion or confidence order.
    """

    instrument: InstrumentId
    company_name: str
    timestamp: datetime = Field(default_factory=_utc_now)
    execution_duration_ms: int = Field(..., ge=0)
    judgments: list[Judgment] = Field(default_factory=list)
    portfolio_snapshot: PortfolioSnapshot | None = None
    historical_context: HistoricalContext | None = None
    consensus: ConsensusDecision


# ==============================================================================
# Trade Signal (Unanimity Gate → message bus)
# ==============================================================================
class TradeSignal(WireModel):
    """The only entity with real-world effect: published to the message bus.

    Attributes:
        instrument: Target instrument.
        action: BUY or SELL. HOLD is rejected at construction.
        quantity: Order quantity.
        confidence: Average confidence across all judgments.
        reason: Human-readable explanation.
        timestamp: Emission time (UTC).
    """

    instrument: InstrumentId
    action: TradeAction
    quantity: float = Field(..., gt=0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str = Field(..., min_length=1)
    timestamp: datetime = Field(default_factory=_utc_now)

    @field_validator("action")
    @classmethod
    def reject_hold(cls, v: TradeAction) -> TradeAction:
        """A trade signal is always actionable."""
        if v == TradeAction.HOLD:
            msg = "TradeSignal action must be BUY or SELL"
            raise ValueError(msg)
        return v

    def to_payload(self) -> bytes:
        """UTF-8 JSON encoding published to the bus."""
        return self.model_dump_json(by_alias=True).encode("utf-8")


# ==============================================================================
# Agent Protocol (Structural Subtyping)
# ==============================================================================
@runtime_checkable
class AnalysisAgentProtocol(Protocol):
    """Protocol for analysis agents.

    Any class with a matching ``judge`` coroutine is compatible. Implementations
    must never raise: every failure becomes a degraded Judgment.
    """

    unit_id: str

    async def judge(
        self,
        instrument: InstrumentId,
        company_name: str,
        context: str = "",
    ) -> Judgment:
        """Produce a judgment for one instrument.

        Args:
            instrument: The instrument being analysed.
            company_name: Human-readable company name for prompts.
            context: Free-text extra context supplied by the caller.

        Returns:
            Judgment (degraded on failure).
        """
        ...
