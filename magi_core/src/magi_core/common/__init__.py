"""Common domain types and primitives for the MAGI decision service."""

from magi_core.common.types import (
    DEFAULT_MISSING_CONFIDENCE,
    ConsensusStrength,
    DomainModel,
    InstrumentId,
    TradeAction,
    WireModel,
    normalize_instrument,
)

__all__ = [
    "DEFAULT_MISSING_CONFIDENCE",
    "ConsensusStrength",
    "DomainModel",
    "InstrumentId",
    "TradeAction",
    "WireModel",
    "normalize_instrument",
]
