"""Named tool registry for function-calling models.

Tools are exposed to the model in OpenAI function-tool format and executed
by name. Every result is a JSON string; handler failures that belong to the
tool's contract (bad symbol, too little history) are encoded in the result
as ``{"success": false, ...}`` so the model can read them.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import structlog

from magi_core.data.interfaces import DataLoadError, InsufficientHistoryError
from magi_core.data.transform import compute_technical_snapshot

if TYPE_CHECKING:
    from magi_core.data.interfaces import MarketDataSource
    from magi_core.execution.portfolio import PortfolioProvider

log = structlog.get_logger()

ToolHandler = Callable[..., Awaitable[dict[str, Any]]]


# ==============================================================================
# Custom Exceptions
# ==============================================================================
class UnknownToolError(Exception):
    """Raised when the model requests a tool that is not registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class ToolExecutionError(Exception):
    """Raised when a tool call cannot be executed (bad arguments, handler crash)."""

    def __init__(self, name: str, message: str) -> None:
        self.name = name
        super().__init__(f"Tool {name} failed: {message}")


# ==============================================================================
# Registry
# ==============================================================================
@dataclass(frozen=True)
class Tool:
    """A named async function the model may call."""

    name: str
    description: str
    handler: ToolHandler
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def definition(self) -> dict[str, Any]:
        """OpenAI function-tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolRegistry:
    """Fixed set of tools resolved by name."""

    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def definitions(self) -> list[dict[str, Any]]:
        """Definitions for every registered tool, in registration order."""
        return [tool.definition() for tool in self._tools.values()]

    async def execute(self, name: str, arguments: str | dict[str, Any] | None) -> str:
        """Run a tool and return its JSON-encoded result.

        Args:
            name: Tool name requested by the model.
            arguments: JSON object string (as sent by the model) or a dict.

        Returns:
            JSON string.

        Raises:
            UnknownToolError: ``name`` is not registered.
            ToolExecutionError: Arguments are not a JSON object, or the
                handler raised.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)

        if isinstance(arguments, dict):
            kwargs = arguments
        else:
            try:
                kwargs = json.loads(arguments or "{}")
            except json.JSONDecodeError as e:
                raise ToolExecutionError(name, f"invalid JSON arguments: {e.msg}") from e
            if not isinstance(kwargs, dict):
                raise ToolExecutionError(name, "arguments must be a JSON object")

        try:
            result = await tool.handler(**kwargs)
        except TypeError as e:
            raise ToolExecutionError(name, str(e)) from e

        log.debug("Tool executed", tool=name, success=result.get("success"))
        return json.dumps(result, default=str)


# ==============================================================================
# Default Tools
# ==============================================================================
def _stock_price_tool(source: MarketDataSource) -> Tool:
    async def get_stock_price(symbol: str) -> dict[str, Any]:
        try:
            quote = await source.get_quote(symbol.upper())
        except DataLoadError as e:
            return {"success": False, "error": str(e)}
        return {"success": True, "data": quote.to_wire()}

    return Tool(
        name="get_stock_price",
        description="Get the current price, volume and daily change for a ticker.",
        handler=get_stock_price,
        parameters={
            "type": "object",
            "properties": {
                "symbol": {"type": "string", "description": "Ticker symbol (e.g. AAPL)"},
            },
            "required": ["symbol"],
        },
    )


def _technical_tool(source: MarketDataSource) -> Tool:
    async def get_technical_indicators(symbol: str, period: str = "3mo") -> dict[str, Any]:
        symbol = symbol.upper()
        try:
            history = await source.get_history(symbol, period)
            snapshot = compute_technical_snapshot(history, symbol)
        except InsufficientHistoryError as e:
            return {"success": False, "code": "INSUFFICIENT_HISTORY", "error": str(e)}
        except DataLoadError as e:
            return {"success": False, "error": str(e)}
        return {"success": True, "data": snapshot.to_wire()}

    return Tool(
        name="get_technical_indicators",
        description="Compute RSI, MACD, moving averages and Bollinger Bands for a ticker.",
        handler=get_technical_indicators,
        parameters={
            "type": "object",
            "properties": {
                "symbol": {"type": "string", "description": "Ticker symbol"},
                "period": {"type": "string", "description": "Lookback: 1mo, 3mo, 6mo"},
            },
            "required": ["symbol"],
        },
    )


def _portfolio_tool(provider: PortfolioProvider) -> Tool:
    async def get_portfolio_position(symbol: str | None = None) -> dict[str, Any]:
        try:
            if symbol:
                positions = await provider.get_positions(symbol.upper())
                return {
                    "success": True,
                    "data": {
                        "positions": [p.to_wire() for p in positions],
                        "totalPositions": len(positions),
                    },
                }
            snapshot = await provider.get_snapshot()
        except Exception as e:
            log.warning("Portfolio tool failed", symbol=symbol, error=str(e))
            return {"success": False, "error": str(e)}
        return {"success": True, "data": snapshot.to_wire()}

    return Tool(
        name="get_portfolio_position",
        description="Get current brokerage positions and balances.",
        handler=get_portfolio_position,
        parameters={
            "type": "object",
            "properties": {
                "symbol": {
                    "type": "string",
                    "description": "Single ticker (omit for all positions)",
                },
            },
        },
    )


def build_default_registry(
    market_source: MarketDataSource,
    portfolio_provider: PortfolioProvider | None = None,
) -> ToolRegistry:
    """Registry with the price and indicator tools, plus the portfolio tool
    when a provider is configured."""
    tools = [_stock_price_tool(market_source), _technical_tool(market_source)]
    if portfolio_provider is not None:
        tools.append(_portfolio_tool(portfolio_provider))
    return ToolRegistry(tools)
