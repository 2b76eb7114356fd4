"""Multi-agent supervisor: fan-out dispatch and the decision pipeline.

The Supervisor orchestrates one analysis request:
1. Launches every selected unit concurrently, together with the portfolio
   lookup and the ISABEL context search
2. Waits for all of them to settle; failures become degraded values
3. Runs the consensus engine over the judgments
4. Hands everything to the arbiter for the final decision

No state is kept between requests beyond the agent table built at startup,
so every request is independently replayable.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from magi_core.agents.consensus import ConsensusEngine
from magi_core.agents.context import ISABEL_UNIT_ID
from magi_core.agents.protocol import AnalysisResult, Judgment
from magi_core.common.types import normalize_instrument

if TYPE_CHECKING:
    from collections.abc import Sequence

    from magi_core.agents.arbiter import Arbiter
    from magi_core.agents.context import ContextProvider
    from magi_core.agents.protocol import (
        AnalysisAgentProtocol,
        HistoricalContext,
        PortfolioSnapshot,
    )
    from magi_core.common.types import InstrumentId
    from magi_core.execution.portfolio import PortfolioProvider

log = structlog.get_logger()


@dataclass(frozen=True)
class Dispatch:
    """Everything gathered by one fan-out.

    Attributes:
        judgments: One per launched unit, in launch order.
        portfolio: Portfolio snapshot, or None if unavailable.
        history: ISABEL context, or None if not requested or unavailable.
    """

    judgments: list[Judgment]
    portfolio: PortfolioSnapshot | None
    history: HistoricalContext | None


@dataclass(frozen=True)
class UnitSelection:
    agents: list[AnalysisAgentProtocol]
    include_context: bool


# ==============================================================================
# Supervisor
# ==============================================================================
class Supervisor:
    """Fan-out dispatcher and pipeline driver.

    Attributes:
        agents: Voting units keyed by upper-case unit id, in launch order.
        arbiter: Final synthesis step.
        engine: Consensus engine.
        portfolio_provider: Optional brokerage lookup.
        context_provider: Optional ISABEL context source.
    """

    def __init__(
        self,
        agents: Sequence[AnalysisAgentProtocol],
        arbiter: Arbiter,
        *,
        engine: ConsensusEngine | None = None,
        portfolio_provider: PortfolioProvider | None = None,
        context_provider: ContextProvider | None = None,
    ) -> None:
        """Initialize Supervisor.

        Args:
            agents: Credentialed voting units in canonical launch order.
            arbiter: Arbiter step.
            engine: Consensus engine (default: ConsensusEngine()).
            portfolio_provider: Portfolio lookup (optional).
            context_provider: ISABEL context (optional).
        """
        self.agents: dict[str, AnalysisAgentProtocol] = {}
        for agent in agents:
            key = agent.unit_id.upper()
            if key in self.agents:
                msg = f"Duplicate unit id: {agent.unit_id}"
                raise ValueError(msg)
            self.agents[key] = agent

        self.arbiter = arbiter
        self.engine = engine or ConsensusEngine()
        self.portfolio_provider = portfolio_provider
        self.context_provider = context_provider

        log.info(
            "Supervisor initialized",
            units=list(self.agents),
            context=context_provider is not None,
            portfolio=portfolio_provider is not None,
        )

    @property
    def unit_ids(self) -> list[str]:
        """Available unit ids, including ISABEL when configured."""
        ids = [agent.unit_id for agent in self.agents.values()]
        if self.context_provider is not None:
            ids.insert(0, ISABEL_UNIT_ID)
        return ids

    def select_units(self, subset: Sequence[str] | None = None) -> UnitSelection:
        """Resolve a requested unit subset.

        ``None`` selects every configured unit. Matching is case-insensitive;
        unknown ids are ignored. Launch order is always the canonical order,
        not the order of ``subset``.
        """
        if subset is None:
            return UnitSelection(
                agents=list(self.agents.values()),
                include_context=self.context_provider is not None,
            )

        requested = {unit.strip().upper() for unit in subset if unit and unit.strip()}
        known = set(self.agents) | {ISABEL_UNIT_ID}
        unknown = sorted(requested - known)
        if unknown:
            log.warning("Ignoring unknown units", units=unknown)

        return UnitSelection(
            agents=[agent for key, agent in self.agents.items() if key in requested],
            include_context=(
                ISABEL_UNIT_ID in requested and self.context_provider is not None
            ),
        )

    async def _fetch_portfolio(self) -> PortfolioSnapshot | None:
        if self.portfolio_provider is None:
            return None
        return await self.portfolio_provider.get_snapshot()

    async def _fetch_context(
        self, instrument: InstrumentId, company_name: str, enabled: bool
    ) -> HistoricalContext | None:
        if not enabled or self.context_provider is None:
            return None
        return await self.context_provider.fetch(instrument, company_name)

    async def dispatch(
        self,
        instrument: InstrumentId,
        company_name: str,
        context: str = "",
        units: Sequence[str] | None = None,
    ) -> Dispatch:
        """Run the selected units concurrently and wait for all of them.

        No unit's failure cancels or delays another. Collaborator failures
        (portfolio, ISABEL) are logged and become None.
        """
        selection = self.select_units(units)
        agents = selection.agents

        results = await asyncio.gather(
            *(agent.judge(instrument, company_name, context) for agent in agents),
            self._fetch_portfolio(),
            self._fetch_context(instrument, company_name, selection.include_context),
            return_exceptions=True,
        )
        agent_results = results[: len(agents)]
        portfolio_result, context_result = results[len(agents) :]

        judgments: list[Judgment] = []
        for agent, result in zip(agents, agent_results, strict=True):
            if isinstance(result, BaseException):
                log.error("Unit raised past its boundary", unit=agent.unit_id, error=str(result))
                judgments.append(Judgment.failed(agent.unit_id, str(result) or type(result).__name__))
            else:
                judgments.append(result)

        portfolio: PortfolioSnapshot | None = None
        if isinstance(portfolio_result, BaseException):
            log.warning("Portfolio lookup failed", error=str(portfolio_result))
        else:
            portfolio = portfolio_result

        history: HistoricalContext | None = None
        if isinstance(context_result, BaseException):
            log.warning("Historical context unavailable", error=str(context_result))
        else:
            history = context_result

        log.debug(
            "Dispatch settled",
            units=len(agents),
            failed=sum(1 for j in judgments if not j.is_valid),
        )
        return Dispatch(judgments=judgments, portfolio=portfolio, history=history)

    async def run(
        self,
        instrument: str,
        company_name: str | None = None,
        context: str = "",
        units: Sequence[str] | None = None,
    ) -> AnalysisResult:
        """Execute the full pipeline for one instrument.

        Args:
            instrument: Ticker (normalized to upper case).
            company_name: Company name for prompts (default: the ticker).
            context: Free-text extra context.
            units: Unit subset (default: all configured units).

        Returns:
            AnalysisResult.
        """
        instrument_id = normalize_instrument(instrument)
        company = company_name or instrument_id
        started = time.perf_counter()

        with structlog.contextvars.bound_contextvars(
            request_id=uuid.uuid4().hex[:12],
            instrument=instrument_id,
        ):
            log.info("Analysis started", company=company)
            dispatch = await self.dispatch(instrument_id, company, context, units)
            preliminary = self.engine.evaluate(dispatch.judgments)
            consensus = await self.arbiter.arbitrate(
                instrument_id,
                dispatch.judgments,
                preliminary,
                portfolio=dispatch.portfolio,
                history=dispatch.history,
            )
            duration_ms = int((time.perf_counter() - started) * 1000)
            log.info(
                "Analysis completed",
                signal=consensus.final_signal.value,
                strength=consensus.strength.value,
                source=consensus.source.value,
                duration_ms=duration_ms,
            )

        return AnalysisResult(
            instrument=instrument_id,
            company_name=company,
            execution_duration_ms=duration_ms,
            judgments=dispatch.judgments,
            portfolio_snapshot=dispatch.portfolio,
            historical_context=dispatch.history,
            consensus=consensus,
        )

    async def run_batch(
        self,
        instruments: Sequence[tuple[str, str | None]],
        context: str = "",
        units: Sequence[str] | None = None,
    ) -> list[AnalysisResult]:
        """Run the pipeline for each (instrument, company name) in order.

        Instruments are processed sequentially; each finishes before the
        next starts.
        """
        results: list[AnalysisResult] = []
        for instrument, company_name in instruments:
            results.append(await self.run(instrument, company_name, context, units))
        return results
