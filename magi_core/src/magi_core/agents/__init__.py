"""Multi-agent decision pipeline for the MAGI service.

This package provides the analysis units, the fan-out supervisor, the
consensus engine, the arbiter and the unanimity gate.

Architecture:
    Units (parallel) → ConsensusEngine → Arbiter → AnalysisResult
    AnalysisResult.judgments → UnanimityGate → TradeSignal

Quick Start:
    ```python
    from magi_core.agents import Arbiter, Supervisor, UnanimityGate

    supervisor = Supervisor(agents=[b2, m1, c3, r4], arbiter=Arbiter(gpt_client))
    result = await supervisor.run("AAPL", "Apple Inc.")

    outcome = UnanimityGate(min_confidence=0.7).evaluate(
        result.instrument, result.judgments
    )
    if outcome.signal is not None:
        await publisher.publish(outcome.signal)
    ```
"""

from magi_core.agents.arbiter import Arbiter
from magi_core.agents.base import BaseAnalysisAgent, PromptedAgent, judgment_from_text
from magi_core.agents.consensus import ConsensusEngine, PreliminaryConsensus, classify_strength
from magi_core.agents.context import IsabelContextProvider
from magi_core.agents.esg import ESGRiskAgent
from magi_core.agents.fundamental import FundamentalAgent
from magi_core.agents.gate import GateOutcome, UnanimityGate
from magi_core.agents.parsing import Parsed, Unparsed, extract_structured_block
from magi_core.agents.protocol import (
    AnalysisAgentProtocol,
    AnalysisResult,
    ConsensusDecision,
    DecisionSource,
    Judgment,
    TradeSignal,
)
from magi_core.agents.sentiment import SocialSentimentAgent
from magi_core.agents.supervisor import Supervisor
from magi_core.agents.technical import TechnicalAnalysisAgent
from magi_core.agents.tool_loop import ToolLoopRunner

__all__ = [
    "AnalysisAgentProtocol",
    "AnalysisResult",
    "Arbiter",
    "BaseAnalysisAgent",
    "ConsensusDecision",
    "ConsensusEngine",
    "DecisionSource",
    "ESGRiskAgent",
    "FundamentalAgent",
    "GateOutcome",
    "IsabelContextProvider",
    "Judgment",
    "Parsed",
    "PreliminaryConsensus",
    "PromptedAgent",
    "SocialSentimentAgent",
    "Supervisor",
    "TechnicalAnalysisAgent",
    "ToolLoopRunner",
    "TradeSignal",
    "UnanimityGate",
    "Unparsed",
    "classify_strength",
    "extract_structured_block",
    "judgment_from_text",
]
