"""Shared fakes for the decision pipeline tests."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from magi_core.agents.protocol import (
    AccountSummary,
    Judgment,
    PortfolioSnapshot,
    PositionView,
)
from magi_core.common.types import InstrumentId, TradeAction


# ==============================================================================
# Fakes
# ==============================================================================
class StubAgent:
    """Analysis agent returning a fixed judgment after an optional delay."""

    def __init__(
        self,
        unit_id: str,
        signal: TradeAction = TradeAction.HOLD,
        confidence: float | None = 0.8,
        *,
        delay: float = 0.0,
        raises: Exception | None = None,
    ) -> None:
        self.unit_id = unit_id
        self.signal = signal
        self.confidence = confidence
        self.delay = delay
        self.raises = raises
        self.calls: list[tuple[str, str, str]] = []

    async def judge(
        self, instrument: InstrumentId, company_name: str, context: str = ""
    ) -> Judgment:
        self.calls.append((instrument, company_name, context))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raises is not None:
            raise self.raises
        return Judgment(
            unit_id=self.unit_id,
            signal=self.signal,
            confidence=self.confidence,
            reasoning=f"{self.unit_id} says {self.signal.value}",
        )


class StubCompletionClient:
    """CompletionClient replying with canned text, raising, or stalling."""

    def __init__(
        self,
        reply: str = "",
        *,
        raises: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.reply = reply
        self.raises = raises
        self.delay = delay
        self.prompts: list[dict[str, Any]] = []

    async def complete(self, *, system: str | None, prompt: str) -> str:
        self.prompts.append({"system": system, "prompt": prompt})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raises is not None:
            raise self.raises
        return self.reply


class StubPortfolioProvider:
    """PortfolioProvider with a fixed snapshot, or failing on demand."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.snapshot = PortfolioSnapshot(
            account=AccountSummary(
                cash=10_000.0, portfolio_value=15_000.0, equity=15_000.0, buying_power=20_000.0
            ),
            positions=[
                PositionView(
                    symbol="AAPL",
                    qty=10,
                    avg_entry_price=150.0,
                    current_price=180.0,
                    unrealized_pl=300.0,
                    market_value=1800.0,
                )
            ],
        )

    async def get_snapshot(self) -> PortfolioSnapshot:
        if self.fail:
            raise ConnectionError("brokerage unreachable")
        return self.snapshot

    async def get_positions(self, symbol: str | None = None) -> list[PositionView]:
        if self.fail:
            raise ConnectionError("brokerage unreachable")
        return [p for p in self.snapshot.positions if symbol is None or p.symbol == symbol]


# ==============================================================================
# Fixtures
# ==============================================================================
@pytest.fixture
def instrument() -> InstrumentId:
    """Sample instrument ID."""
    return InstrumentId("AAPL")


@pytest.fixture
def portfolio_provider() -> StubPortfolioProvider:
    return StubPortfolioProvider()
