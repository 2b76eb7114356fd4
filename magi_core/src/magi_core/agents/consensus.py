"""Confidence-weighted voting over agent judgments.

The engine is a pure function of its input: no state, no I/O. Identical
judgment sequences always yield identical preliminary decisions.

Algorithm:
    1. Keep judgments without an error.
    2. weighted[X] = sum of confidence of judgments voting X
       (missing confidence counts as DEFAULT_MISSING_CONFIDENCE).
    3. decision = label with the max weight; ties resolve BUY > SELL > HOLD.
    4. ratio = max weight / total weight; avg_confidence = mean confidence.
    5. strength: STRONG if ratio >= 0.75 and avg >= 0.70,
       MODERATE if ratio >= 0.50, else WEAK.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

import structlog

from magi_core.agents.protocol import ConsensusDecision, DecisionSource
from magi_core.common.types import DEFAULT_MISSING_CONFIDENCE, ConsensusStrength, TradeAction

if TYPE_CHECKING:
    from collections.abc import Sequence

    from magi_core.agents.protocol import Judgment

log = structlog.get_logger()

# ==============================================================================
# Constants
# ==============================================================================
STRONG_RATIO: Final[float] = 0.75
STRONG_MIN_CONFIDENCE: Final[float] = 0.70
MODERATE_RATIO: Final[float] = 0.50

TIE_BREAK_ORDER: Final[tuple[TradeAction, ...]] = (
    TradeAction.BUY,
    TradeAction.SELL,
    TradeAction.HOLD,
)


def classify_strength(ratio: float, avg_confidence: float) -> ConsensusStrength:
    """Map vote ratio and average confidence to a strength label."""
    if ratio >= STRONG_RATIO and avg_confidence >= STRONG_MIN_CONFIDENCE:
        return ConsensusStrength.STRONG
    if ratio >= MODERATE_RATIO:
        return ConsensusStrength.MODERATE
    return ConsensusStrength.WEAK


def effective_confidence(judgment: Judgment) -> float:
    """Confidence used for weighting; a missing value counts as the default."""
    if judgment.confidence is None:
        return DEFAULT_MISSING_CONFIDENCE
    return judgment.confidence


@dataclass(frozen=True)
class PreliminaryConsensus:
    """Weighted-vote outcome before arbitration.

    Attributes:
        decision: Label with the highest weighted sum.
        strength: Derived strength label.
        avg_confidence: Mean effective confidence of valid judgments.
        ratio: Winning weight over total weight (0 when total is 0).
        weighted: Weighted sum per label.
        votes: Unit ids per label.
        valid_count: Number of judgments that took part.
    """

    decision: TradeAction
    strength: ConsensusStrength
    avg_confidence: float
    ratio: float
    weighted: dict[TradeAction, float]
    votes: dict[TradeAction, list[str]]
    valid_count: int

    def to_decision(
        self,
        *,
        strength: ConsensusStrength | None = None,
        source: DecisionSource = DecisionSource.PRELIMINARY,
        reasoning: str = "",
        error: str | None = None,
    ) -> ConsensusDecision:
        """Render as a ConsensusDecision, optionally overriding strength."""
        return ConsensusDecision(
            final_signal=self.decision,
            strength=strength or self.strength,
            confidence=self.avg_confidence,
            reasoning=reasoning,
            source=source,
            error=error,
        )


class ConsensusEngine:
    """Weighted-vote consensus over a judgment sequence."""

    def evaluate(self, judgments: Sequence[Judgment]) -> PreliminaryConsensus | None:
        """Combine judgments into a preliminary decision.

        Args:
            judgments: All judgments of one request (failed ones are skipped).

        Returns:
            PreliminaryConsensus, or None when no judgment is valid.
        """
        valid = [j for j in judgments if j.is_valid]
        if not valid:
            log.warning("Consensus undefined (no valid judgments)", total=len(judgments))
            return None

        votes: dict[TradeAction, list[str]] = {action: [] for action in TIE_BREAK_ORDER}
        weighted: dict[TradeAction, float] = {action: 0.0 for action in TIE_BREAK_ORDER}
        for judgment in valid:
            votes[judgment.signal].append(judgment.unit_id)
            weighted[judgment.signal] += effective_confidence(judgment)

        total = sum(weighted.values())
        avg_confidence = sum(effective_confidence(j) for j in valid) / len(valid)

        if total <= 0:
            decision = TradeAction.HOLD
            ratio = 0.0
        else:
            top = max(weighted.values())
            decision = next(a for a in TIE_BREAK_ORDER if weighted[a] == top)
            ratio = top / total

        strength = classify_strength(ratio, avg_confidence)
        log.debug(
            "Preliminary consensus",
            decision=decision.value,
            strength=strength.value,
            ratio=round(ratio, 4),
            avg_confidence=round(avg_confidence, 4),
        )
        return PreliminaryConsensus(
            decision=decision,
            strength=strength,
            avg_confidence=avg_confidence,
            ratio=ratio,
            weighted=weighted,
            votes=votes,
            valid_count=len(valid),
        )
