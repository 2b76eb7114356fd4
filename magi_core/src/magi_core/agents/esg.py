"""Unit C3: ESG, regulatory and litigation risk (Claude with web search)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from magi_core.agents.base import JSON_OUTPUT_CONTRACT, PromptedAgent

if TYPE_CHECKING:
    from magi_core.common.types import InstrumentId


class ESGRiskAgent(PromptedAgent):
    """Weighs environmental, social and governance exposure against upside.

    Leans conservative: regulatory or litigation red flags usually mean
    HOLD or SELL even when the rest of the picture is positive.
    """

    system_prompt = (
        "You are Unit-C3 of the MAGI system, responsible for ESG and risk analysis. "
        "Investigate environmental, social and governance information, regulatory "
        "risk and litigation risk.\n\n"
        + JSON_OUTPUT_CONTRACT.format(
            unit="C3",
            analysis='{"esg_score": {...}, "risk_factors": [...], "positive_factors": [...]}',
        )
    )

    def build_prompt(self, instrument: InstrumentId, company_name: str, context: str) -> str:
        return (
            f"Run an ESG and risk analysis for {company_name} ({instrument}). "
            "Use web search to investigate ESG information, regulatory risk and "
            "litigation risk, then output your investment judgment as JSON."
            + (f"\n\nAdditional context: {context}" if context else "")
        )
