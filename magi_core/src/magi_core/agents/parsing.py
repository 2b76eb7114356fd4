"""Best-effort extraction of structured output from free-text model replies.

Models are asked for a single JSON object but routinely wrap it in prose or
markdown fences. Every agent and the arbiter go through the same utility:
locate the first balanced ``{...}`` region, try to parse it, and return a
typed ``Unparsed`` value instead of raising when that fails.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

# ==============================================================================
# Result Types
# ==============================================================================
@dataclass(frozen=True)
class Parsed:
    """A JSON object successfully extracted from the reply."""

    payload: dict[str, Any]
    raw: str


@dataclass(frozen=True)
class Unparsed:
    """The reply did not contain a usable JSON object."""

    raw: str
    reason: str = field(default="no structured block found")


ExtractionResult = Parsed | Unparsed


# ==============================================================================
# Extraction
# ==============================================================================
def find_balanced_block(text: str, open_char: str = "{", close_char: str = "}") -> str | None:
    """Return the first balanced bracketed region of ``text``.

    Brackets inside JSON string literals are ignored. Returns None when no
    opening bracket exists or the first one is never closed.
    """
    start = text.find(open_char)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                return text[start : index + 1]

    return None


def extract_structured_block(text: str | None) -> ExtractionResult:
    """Extract and parse the first JSON object embedded in ``text``.

    Args:
        text: Raw model output (may be None or empty).

    Returns:
        Parsed with the decoded object, or Unparsed carrying the raw text.
    """
    raw = text or ""
    block = find_balanced_block(raw)
    if block is None:
        return Unparsed(raw=raw)

    try:
        payload = json.loads(block)
    except json.JSONDecodeError as exc:
        return Unparsed(raw=raw, reason=f"invalid JSON: {exc.msg}")
    except (ValueError, RecursionError) as exc:
        # Nesting too deep or an integer literal past the conversion limit.
        return Unparsed(raw=raw, reason=f"undecodable JSON: {type(exc).__name__}")

    return Parsed(payload=payload, raw=raw)
