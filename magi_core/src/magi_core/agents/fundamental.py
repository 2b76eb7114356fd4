"""Unit M1: fundamentals from news, earnings and analyst ratings (Gemini)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from magi_core.agents.base import JSON_OUTPUT_CONTRACT, PromptedAgent

if TYPE_CHECKING:
    from magi_core.common.types import InstrumentId


class FundamentalAgent(PromptedAgent):
    system_prompt = (
        "You are Unit-M1 of the MAGI system, responsible for fundamental analysis. "
        "Analyse the latest news, earnings reports and analyst ratings.\n\n"
        + JSON_OUTPUT_CONTRACT.format(
            unit="M1",
            analysis='{"news": [...], "financials": {"pe": ..., "growth": ...}, '
            '"analyst_rating": "..."}',
        )
    )

    def build_prompt(self, instrument: InstrumentId, company_name: str, context: str) -> str:
        return (
            f"Use Google Search to research the latest news and earnings for "
            f"{company_name} ({instrument}), run a fundamental analysis and output JSON only."
            + (f"\n\nAdditional context: {context}" if context else "")
        )
