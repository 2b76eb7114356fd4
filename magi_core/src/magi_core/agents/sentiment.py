"""Unit B2: social sentiment from X/Twitter chatter (xAI Grok)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from magi_core.agents.base import JSON_OUTPUT_CONTRACT, PromptedAgent

if TYPE_CHECKING:
    from magi_core.common.types import InstrumentId


class SocialSentimentAgent(PromptedAgent):
    """Reads retail and social-media mood around a ticker."""

    system_prompt = (
        "You are Unit-B2 of the MAGI system, responsible for social sentiment analysis. "
        "Assess real-time market sentiment from X/Twitter activity.\n\n"
        + JSON_OUTPUT_CONTRACT.format(
            unit="B2",
            analysis='{"sentiment_score": -1.0-1.0, "key_topics": [...], '
            '"social_volume": "LOW|NORMAL|HIGH"}',
        )
    )

    def build_prompt(self, instrument: InstrumentId, company_name: str, context: str) -> str:
        return (
            f"Run a social sentiment analysis for {company_name} ({instrument}). "
            "Consider mentions on X/Twitter, investor reactions and trends, "
            "then output your investment judgment as JSON."
            + (f"\n\nAdditional context: {context}" if context else "")
        )
