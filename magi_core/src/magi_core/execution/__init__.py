"""Execution collaborators: brokerage portfolio lookup and signal bus."""

from magi_core.execution.bus import (
    MemorySignalPublisher,
    PublishError,
    RedisSignalPublisher,
    SignalPublisher,
    create_publisher,
)
from magi_core.execution.portfolio import AlpacaPortfolioProvider, PortfolioProvider

__all__ = [
    "AlpacaPortfolioProvider",
    "MemorySignalPublisher",
    "PortfolioProvider",
    "PublishError",
    "RedisSignalPublisher",
    "SignalPublisher",
    "create_publisher",
]
