"""Unanimity gate: the last check before a signal leaves the process.

A TradeSignal is emitted only when every judgment votes the same
non-HOLD action and the mean confidence over all judgments (failed ones
count as zero) clears the threshold.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

import structlog

from magi_core.agents.protocol import TradeSignal
from magi_core.common.types import TradeAction

if TYPE_CHECKING:
    from collections.abc import Sequence

    from magi_core.agents.protocol import Judgment
    from magi_core.common.types import InstrumentId

log = structlog.get_logger()

DEFAULT_MIN_CONFIDENCE: Final[float] = 0.70
DEFAULT_QUANTITY: Final[float] = 1.0


@dataclass(frozen=True)
class GateOutcome:
    """Evaluation of one judgment set.

    Attributes:
        votes: Count per action.
        avg_confidence: Mean confidence over all judgments (None counts as 0).
        unanimous: Every judgment voted BUY, or every judgment voted SELL.
        action: Majority between BUY and SELL, HOLD on a tie.
        signal: The emitted signal, or None.
        reason: Human-readable explanation.
    """

    votes: dict[TradeAction, int]
    avg_confidence: float
    unanimous: bool
    action: TradeAction
    signal: TradeSignal | None
    reason: str

    @property
    def emitted(self) -> bool:
        return self.signal is not None

    def votes_wire(self) -> dict[str, int]:
        return {action.value: count for action, count in self.votes.items()}


class UnanimityGate:
    """Emit a TradeSignal only on unanimous, confident agreement.

    Attributes:
        min_confidence: Minimum mean confidence to emit.
        default_quantity: Quantity of every emitted signal.
    """

    def __init__(
        self,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        default_quantity: float = DEFAULT_QUANTITY,
    ) -> None:
        self.min_confidence = min_confidence
        self.default_quantity = default_quantity

    def evaluate(self, instrument: InstrumentId, judgments: Sequence[Judgment]) -> GateOutcome:
        """Apply the gate to every judgment produced for ``instrument``."""
        total = len(judgments)
        votes = {action: 0 for action in (TradeAction.BUY, TradeAction.HOLD, TradeAction.SELL)}
        for judgment in judgments:
            votes[judgment.signal] += 1

        avg_confidence = (
            sum(j.confidence or 0.0 for j in judgments) / total if total else 0.0
        )
        unanimous = total > 0 and (
            votes[TradeAction.BUY] == total or votes[TradeAction.SELL] == total
        )

        if votes[TradeAction.BUY] > votes[TradeAction.SELL]:
            action = TradeAction.BUY
        elif votes[TradeAction.SELL] > votes[TradeAction.BUY]:
            action = TradeAction.SELL
        else:
            action = TradeAction.HOLD

        if unanimous and avg_confidence >= self.min_confidence and action != TradeAction.HOLD:
            reason = f"{total} agents unanimous {action.value}"
            signal = TradeSignal(
                instrument=instrument,
                action=action,
                quantity=self.default_quantity,
                confidence=avg_confidence,
                reason=reason,
            )
            log.info(
                "Trade signal emitted",
                instrument=instrument,
                action=action.value,
                confidence=round(avg_confidence, 4),
            )
        else:
            signal = None
            reason = (
                "Not unanimous or low confidence: "
                f"BUY:{votes[TradeAction.BUY]} HOLD:{votes[TradeAction.HOLD]} "
                f"SELL:{votes[TradeAction.SELL]}, confidence:{avg_confidence:.2f}"
            )
            log.info("No trade signal", instrument=instrument, reason=reason)

        return GateOutcome(
            votes=votes,
            avg_confidence=avg_confidence,
            unanimous=unanimous,
            action=action,
            signal=signal,
            reason=reason,
        )
