"""Tests for consensus, arbitration and the unanimity gate.

Tests cover:
- Weighted voting (strength thresholds, tie-break, missing confidence)
- Arbiter success and each fallback path
- Unanimity gate emission rules
"""

from __future__ import annotations

import json

import pytest

from conftest import StubCompletionClient
from magi_core.agents.arbiter import Arbiter, ArbiterVerdict
from magi_core.agents.consensus import ConsensusEngine, classify_strength
from magi_core.agents.gate import UnanimityGate
from magi_core.agents.protocol import DecisionSource, Judgment
from magi_core.common.types import ConsensusStrength, InstrumentId, TradeAction
from magi_core.llm.base import LLMClientError


def _j(unit: str, signal: TradeAction, confidence: float | None) -> Judgment:
    return Judgment(unit_id=unit, signal=signal, confidence=confidence)


BUY, SELL, HOLD = TradeAction.BUY, TradeAction.SELL, TradeAction.HOLD


# ==============================================================================
# Consensus Engine Tests
# ==============================================================================
class TestConsensusEngine:
    """Tests for ConsensusEngine."""

    def test_unanimous_confident_is_strong(self) -> None:
        result = ConsensusEngine().evaluate(
            [_j("B2", BUY, 0.8), _j("M1", BUY, 0.9), _j("C3", BUY, 0.7)]
        )

        assert result is not None
        assert result.decision == BUY
        assert result.strength == ConsensusStrength.STRONG
        assert result.ratio == pytest.approx(1.0)
        assert result.avg_confidence == pytest.approx(0.8)

    def test_split_vote_is_weak_with_buy_tie_break(self) -> None:
        result = ConsensusEngine().evaluate(
            [_j("B2", BUY, 0.6), _j("M1", SELL, 0.6), _j("C3", HOLD, 0.5)]
        )

        assert result is not None
        assert result.decision == BUY
        assert result.ratio == pytest.approx(0.6 / 1.7)
        assert result.strength == ConsensusStrength.WEAK

    def test_sell_beats_hold_on_tie(self) -> None:
        result = ConsensusEngine().evaluate([_j("B2", SELL, 0.5), _j("M1", HOLD, 0.5)])

        assert result is not None
        assert result.decision == SELL
        assert result.strength == ConsensusStrength.MODERATE

    def test_three_of_four_agreeing(self) -> None:
        result = ConsensusEngine().evaluate(
            [
                _j("B2", SELL, 0.75),
                _j("M1", SELL, 0.75),
                _j("C3", SELL, 0.75),
                _j("R4", HOLD, 0.75),
            ]
        )

        assert result is not None
        assert result.decision == SELL
        assert result.ratio == pytest.approx(0.75)
        assert result.strength == ConsensusStrength.STRONG
        assert result.votes[SELL] == ["B2", "M1", "C3"]

    def test_failed_judgments_excluded(self) -> None:
        result = ConsensusEngine().evaluate(
            [_j("B2", BUY, 0.9), Judgment.failed("M1", "timeout after 90.0s")]
        )

        assert result is not None
        assert result.valid_count == 1
        assert result.votes[HOLD] == []

    def test_missing_confidence_weighs_default(self) -> None:
        result = ConsensusEngine().evaluate([_j("B2", BUY, None), _j("M1", SELL, 0.4)])

        assert result is not None
        assert result.decision == BUY
        assert result.weighted[BUY] == pytest.approx(0.5)
        assert result.avg_confidence == pytest.approx(0.45)

    def test_zero_confidence_is_not_defaulted(self) -> None:
        result = ConsensusEngine().evaluate([_j("B2", BUY, 0.0), _j("M1", SELL, 0.0)])

        assert result is not None
        assert result.decision == HOLD
        assert result.ratio == 0.0
        assert result.strength == ConsensusStrength.WEAK

    def test_no_valid_judgments(self) -> None:
        assert ConsensusEngine().evaluate([Judgment.failed("B2", "boom")]) is None
        assert ConsensusEngine().evaluate([]) is None

    def test_deterministic(self) -> None:
        judgments = [_j("B2", BUY, 0.6), _j("M1", SELL, 0.7), _j("C3", BUY, 0.3)]
        engine = ConsensusEngine()

        assert engine.evaluate(judgments) == engine.evaluate(list(judgments))

    def test_more_agreement_never_weakens(self) -> None:
        engine = ConsensusEngine()
        base = [_j("B2", BUY, 0.8), _j("M1", SELL, 0.8), _j("C3", BUY, 0.8)]
        before = engine.evaluate(base)
        after = engine.evaluate([*base, _j("R4", BUY, 0.8)])

        order = [ConsensusStrength.WEAK, ConsensusStrength.MODERATE, ConsensusStrength.STRONG]
        assert before is not None and after is not None
        assert after.ratio >= before.ratio
        assert order.index(after.strength) >= order.index(before.strength)

    @pytest.mark.parametrize(
        ("ratio", "avg", "expected"),
        [
            (0.75, 0.70, ConsensusStrength.STRONG),
            (0.75, 0.69, ConsensusStrength.MODERATE),
            (0.50, 0.90, ConsensusStrength.MODERATE),
            (0.49, 0.90, ConsensusStrength.WEAK),
        ],
    )
    def test_strength_thresholds(
        self, ratio: float, avg: float, expected: ConsensusStrength
    ) -> None:
        assert classify_strength(ratio, avg) == expected


# ==============================================================================
# Arbiter Tests
# ==============================================================================
@pytest.fixture
def strong_judgments() -> list[Judgment]:
    return [_j("B2", BUY, 0.8), _j("M1", BUY, 0.9), _j("C3", BUY, 0.7), _j("R4", BUY, 0.8)]


class TestArbiter:
    """Tests for Arbiter."""

    @pytest.mark.asyncio
    async def test_verdict_adopted(
        self, instrument: InstrumentId, strong_judgments: list[Judgment]
    ) -> None:
        reply = "Decision:\n```json\n" + json.dumps(
            {
                "final_decision": "buy",
                "consensus_strength": "moderate",
                "confidence": 0.66,
                "order_params": {"symbol": "AAPL", "qty": 10, "side": "buy"},
                "risk_warnings": ["earnings next week"],
                "reasoning": "trend intact",
            }
        ) + "\n```"
        client = StubCompletionClient(reply)
        preliminary = ConsensusEngine().evaluate(strong_judgments)

        decision = await Arbiter(client).arbitrate(instrument, strong_judgments, preliminary)

        assert decision.source == DecisionSource.ARBITER
        assert decision.final_signal == BUY
        assert decision.strength == ConsensusStrength.MODERATE
        assert decision.confidence == pytest.approx(0.66)
        assert decision.order_params is not None
        assert decision.order_params.qty == 10
        assert decision.risk_warnings == ["earnings next week"]
        assert "## Instrument: AAPL" in client.prompts[0]["prompt"]

    @pytest.mark.asyncio
    async def test_missing_confidence_uses_preliminary_average(
        self, instrument: InstrumentId, strong_judgments: list[Judgment]
    ) -> None:
        client = StubCompletionClient('{"final_decision": "HOLD", "consensus_strength": "WEAK"}')
        preliminary = ConsensusEngine().evaluate(strong_judgments)

        decision = await Arbiter(client).arbitrate(instrument, strong_judgments, preliminary)

        assert decision.final_signal == HOLD
        assert decision.confidence == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_delegate_failure_downgrades_to_weak(
        self, instrument: InstrumentId, strong_judgments: list[Judgment]
    ) -> None:
        client = StubCompletionClient(raises=LLMClientError("HTTP 500", provider="openai"))
        preliminary = ConsensusEngine().evaluate(strong_judgments)

        decision = await Arbiter(client).arbitrate(instrument, strong_judgments, preliminary)

        assert decision.source == DecisionSource.FALLBACK
        assert decision.final_signal == BUY
        assert decision.strength == ConsensusStrength.WEAK
        assert decision.error == "openai error: HTTP 500"

    @pytest.mark.asyncio
    async def test_delegate_timeout_downgrades_to_weak(
        self, instrument: InstrumentId, strong_judgments: list[Judgment]
    ) -> None:
        client = StubCompletionClient("{}", delay=1.0)
        preliminary = ConsensusEngine().evaluate(strong_judgments)

        decision = await Arbiter(client, timeout_seconds=0.01).arbitrate(
            instrument, strong_judgments, preliminary
        )

        assert decision.source == DecisionSource.FALLBACK
        assert decision.strength == ConsensusStrength.WEAK
        assert decision.error is not None and decision.error.startswith("timeout")

    @pytest.mark.asyncio
    async def test_unparsable_reply_keeps_preliminary_strength(
        self, instrument: InstrumentId, strong_judgments: list[Judgment]
    ) -> None:
        client = StubCompletionClient("I would buy, strongly.")
        preliminary = ConsensusEngine().evaluate(strong_judgments)

        decision = await Arbiter(client).arbitrate(instrument, strong_judgments, preliminary)

        assert decision.source == DecisionSource.PRELIMINARY
        assert decision.strength == ConsensusStrength.STRONG
        assert decision.reasoning == "I would buy, strongly."
        assert decision.error is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "reply",
        [
            '{"a": ' * 5000 + "1" + "}" * 5000,
            '{"final_decision": "SELL", "confidence": ' + "9" * 5000 + "}",
        ],
    )
    async def test_undecodable_reply_keeps_preliminary_strength(
        self, instrument: InstrumentId, strong_judgments: list[Judgment], reply: str
    ) -> None:
        preliminary = ConsensusEngine().evaluate(strong_judgments)

        decision = await Arbiter(StubCompletionClient(reply)).arbitrate(
            instrument, strong_judgments, preliminary
        )

        assert decision.source == DecisionSource.PRELIMINARY
        assert decision.final_signal == TradeAction.BUY
        assert decision.strength == ConsensusStrength.STRONG
        assert decision.error is None

    @pytest.mark.asyncio
    async def test_invalid_verdict_keeps_preliminary_strength(
        self, instrument: InstrumentId, strong_judgments: list[Judgment]
    ) -> None:
        client = StubCompletionClient('{"final_decision": "MAYBE", "consensus_strength": "STRONG"}')
        preliminary = ConsensusEngine().evaluate(strong_judgments)

        decision = await Arbiter(client).arbitrate(instrument, strong_judgments, preliminary)

        assert decision.source == DecisionSource.PRELIMINARY
        assert decision.strength == ConsensusStrength.STRONG

    @pytest.mark.asyncio
    async def test_unconfigured_arbiter_falls_back(
        self, instrument: InstrumentId, strong_judgments: list[Judgment]
    ) -> None:
        preliminary = ConsensusEngine().evaluate(strong_judgments)

        decision = await Arbiter(None).arbitrate(instrument, strong_judgments, preliminary)

        assert decision.source == DecisionSource.FALLBACK
        assert decision.strength == ConsensusStrength.WEAK

    @pytest.mark.asyncio
    async def test_no_valid_judgments_skips_delegate(self, instrument: InstrumentId) -> None:
        client = StubCompletionClient("{}")
        judgments = [Judgment.failed("B2", "boom")]

        decision = await Arbiter(client).arbitrate(
            instrument, judgments, ConsensusEngine().evaluate(judgments)
        )

        assert decision.source == DecisionSource.EMPTY
        assert decision.final_signal == HOLD
        assert decision.strength == ConsensusStrength.WEAK
        assert decision.confidence == 0.0
        assert client.prompts == []

    def test_verdict_labels_case_insensitive(self) -> None:
        verdict = ArbiterVerdict.model_validate(
            {"final_decision": " sell ", "consensus_strength": "Strong"}
        )

        assert verdict.final_decision == SELL
        assert verdict.consensus_strength == ConsensusStrength.STRONG


# ==============================================================================
# Unanimity Gate Tests
# ==============================================================================
class TestUnanimityGate:
    """Tests for UnanimityGate."""

    def test_unanimous_buy_emits_signal(self, instrument: InstrumentId) -> None:
        outcome = UnanimityGate(min_confidence=0.7).evaluate(
            instrument, [_j("B2", BUY, 0.8), _j("M1", BUY, 0.9), _j("C3", BUY, 0.7)]
        )

        assert outcome.emitted
        assert outcome.signal is not None
        assert outcome.signal.action == BUY
        assert outcome.signal.quantity == 1.0
        assert outcome.signal.confidence == pytest.approx(0.8)
        assert outcome.reason == "3 agents unanimous BUY"

    def test_one_dissent_blocks_signal(self, instrument: InstrumentId) -> None:
        outcome = UnanimityGate().evaluate(
            instrument,
            [_j("B2", SELL, 0.9), _j("M1", SELL, 0.9), _j("C3", SELL, 0.9), _j("R4", HOLD, 0.9)],
        )

        assert not outcome.emitted
        assert outcome.action == SELL
        assert outcome.votes_wire() == {"BUY": 0, "HOLD": 1, "SELL": 3}
        assert outcome.reason == (
            "Not unanimous or low confidence: BUY:0 HOLD:1 SELL:3, confidence:0.90"
        )

    def test_low_confidence_blocks_signal(self, instrument: InstrumentId) -> None:
        outcome = UnanimityGate(min_confidence=0.7).evaluate(
            instrument, [_j("B2", SELL, 0.6), _j("M1", SELL, 0.7)]
        )

        assert outcome.unanimous
        assert not outcome.emitted

    def test_missing_confidence_counts_as_zero(self, instrument: InstrumentId) -> None:
        outcome = UnanimityGate(min_confidence=0.5).evaluate(
            instrument, [_j("B2", BUY, 0.9), _j("M1", BUY, None)]
        )

        assert outcome.avg_confidence == pytest.approx(0.45)
        assert not outcome.emitted

    def test_unanimous_hold_never_emits(self, instrument: InstrumentId) -> None:
        outcome = UnanimityGate(min_confidence=0.1).evaluate(
            instrument, [_j("B2", HOLD, 0.9), _j("M1", HOLD, 0.9)]
        )

        assert not outcome.unanimous
        assert outcome.action == HOLD
        assert outcome.signal is None

    def test_empty_input(self, instrument: InstrumentId) -> None:
        outcome = UnanimityGate().evaluate(instrument, [])

        assert not outcome.emitted
        assert outcome.avg_confidence == 0.0

    def test_signal_payload_is_camel_case_json(self, instrument: InstrumentId) -> None:
        outcome = UnanimityGate(default_quantity=5).evaluate(
            instrument, [_j("B2", SELL, 0.9), _j("M1", SELL, 0.8)]
        )

        assert outcome.signal is not None
        payload = json.loads(outcome.signal.to_payload().decode("utf-8"))
        assert payload["instrument"] == "AAPL"
        assert payload["action"] == "SELL"
        assert payload["quantity"] == 5
        assert set(payload) == {"instrument", "action", "quantity", "confidence", "reason", "timestamp"}
