"""Domain primitives and value objects for the MAGI decision service.

This module defines the immutable core types shared by every layer:
agents, the consensus pipeline, the HTTP front door and the message bus.

Architectural Decision:
    Two model bases are provided. ``DomainModel`` is strict and internal.
    ``WireModel`` additionally serializes with camelCase aliases because
    these objects leave the process as JSON (HTTP responses, bus payloads).
"""

from __future__ import annotations

from enum import Enum
from typing import Final, NewType

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# ==============================================================================
# Domain Primitives
# ==============================================================================
InstrumentId = NewType("InstrumentId", str)
"""Ticker of the analysed instrument, normalized to uppercase (e.g., AAPL)."""

DEFAULT_MISSING_CONFIDENCE: Final[float] = 0.5
"""Weight contributed to consensus by a judgment that reported no confidence."""


def normalize_instrument(raw: str) -> InstrumentId:
    """Normalize a user-supplied ticker."""
    return InstrumentId(raw.strip().upper())


# ==============================================================================
# Enumerations
# ==============================================================================
class TradeAction(str, Enum):
    """Directional opinion of an agent or of the final decision.

    Using str mixin for JSON serialization compatibility.
    """

    BUY = "BUY"
    HOLD = "HOLD"
    SELL = "SELL"

    @classmethod
    def parse(cls, value: object) -> TradeAction | None:
        """Return the matching action for a loosely formatted value, or None."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class ConsensusStrength(str, Enum):
    """How strongly the judgments agree on the winning action."""

    STRONG = "STRONG"
    MODERATE = "MODERATE"
    WEAK = "WEAK"


# ==============================================================================
# Base Models
# ==============================================================================
class DomainModel(BaseModel):
    """Base model for internal domain objects.

    Design Decisions:
    - frozen=True: Immutability prevents accidental state mutation
    - extra="forbid": Catch typos and schema drift early
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )


class WireModel(BaseModel):
    """Base model for objects serialized to external consumers.

    Fields are snake_case in Python and camelCase on the wire. Both
    spellings are accepted on input.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict:
        """Serialize to a JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
