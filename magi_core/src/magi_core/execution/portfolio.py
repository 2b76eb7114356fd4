"""Brokerage portfolio lookup.

The snapshot is advisory context for the arbiter and the portfolio tool.
Alpaca's SDK is synchronous, so calls run in a worker thread.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol, runtime_checkable

import structlog
from alpaca.common.exceptions import APIError
from alpaca.trading.client import TradingClient

from magi_core.agents.protocol import AccountSummary, PortfolioSnapshot, PositionView

log = structlog.get_logger()


@runtime_checkable
class PortfolioProvider(Protocol):
    """Source of current cash and positions."""

    async def get_snapshot(self) -> PortfolioSnapshot:
        """Return account balances and all open positions."""
        ...

    async def get_positions(self, symbol: str | None = None) -> list[PositionView]:
        """Return open positions, optionally for a single symbol."""
        ...


def _position_view(pos: Any) -> PositionView:
    return PositionView(
        symbol=pos.symbol,
        qty=float(pos.qty),
        avg_entry_price=float(pos.avg_entry_price),
        current_price=float(pos.current_price or 0.0),
        unrealized_pl=float(pos.unrealized_pl or 0.0),
        market_value=float(pos.market_value or 0.0),
    )


class AlpacaPortfolioProvider:
    """Portfolio provider backed by an Alpaca trading account.

    Attributes:
        paper: Whether the paper trading endpoint is used.
    """

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        *,
        paper: bool = True,
        client: TradingClient | None = None,
    ) -> None:
        self.paper = paper
        self.client = client or TradingClient(
            api_key=api_key,
            secret_key=secret_key,
            paper=paper,
        )

    def _fetch_snapshot(self) -> PortfolioSnapshot:
        account = self.client.get_account()
        positions = self.client.get_all_positions()
        return PortfolioSnapshot(
            account=AccountSummary(
                cash=float(account.cash),
                portfolio_value=float(account.portfolio_value),
                equity=float(account.equity),
                buying_power=float(account.buying_power),
            ),
            positions=[_position_view(p) for p in positions],
        )

    def _fetch_positions(self, symbol: str | None) -> list[PositionView]:
        if symbol is None:
            return [_position_view(p) for p in self.client.get_all_positions()]
        try:
            position = self.client.get_open_position(symbol)
        except APIError:
            # Alpaca answers 404 when no position is open for the symbol.
            return []
        return [_position_view(position)]

    async def get_snapshot(self) -> PortfolioSnapshot:
        """Fetch account balances and all positions."""
        snapshot = await asyncio.to_thread(self._fetch_snapshot)
        log.debug(
            "Portfolio snapshot fetched",
            positions=snapshot.total_positions,
            cash=snapshot.account.cash,
        )
        return snapshot

    async def get_positions(self, symbol: str | None = None) -> list[PositionView]:
        """Fetch open positions, optionally filtered to ``symbol``."""
        return await asyncio.to_thread(self._fetch_positions, symbol)
