"""MAGI Decision Service Entrypoint.

This module bootstraps the service using Hydra for configuration management.
All runtime parameters are externalized to YAML files in conf/.

Usage:
    # Default config (dev, in-memory bus)
    python -m magi_core.main

    # Production logging and Redis bus
    python -m magi_core.main env=prod bus.backend=redis

    # Stricter gate
    python -m magi_core.main decision.min_confidence=0.8
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import hydra
import structlog
import uvicorn
from omegaconf import OmegaConf

from magi_core.agents.arbiter import Arbiter
from magi_core.agents.context import IsabelContextProvider
from magi_core.agents.esg import ESGRiskAgent
from magi_core.agents.fundamental import FundamentalAgent
from magi_core.agents.gate import UnanimityGate
from magi_core.agents.sentiment import SocialSentimentAgent
from magi_core.agents.supervisor import Supervisor
from magi_core.agents.technical import TechnicalAnalysisAgent
from magi_core.api.app import create_app
from magi_core.config import ServiceSettings
from magi_core.data.loaders import YahooFinanceSource
from magi_core.execution.bus import create_publisher
from magi_core.execution.portfolio import AlpacaPortfolioProvider
from magi_core.llm.claude import ClaudeClient
from magi_core.llm.gemini import GeminiClient
from magi_core.llm.openai_compat import MISTRAL_BASE_URL, XAI_BASE_URL, OpenAIChatClient
from magi_core.tools.registry import build_default_registry

if TYPE_CHECKING:
    from fastapi import FastAPI
    from omegaconf import DictConfig

    from magi_core.agents.protocol import AnalysisAgentProtocol
    from magi_core.execution.portfolio import PortfolioProvider


# ==============================================================================
# Logging Configuration
# ==============================================================================
def configure_logging(*, json_output: bool = True, log_level: str = "INFO") -> None:
    """Configure structlog for service logging.

    Design Decisions:
    - JSON output for log aggregation outside dev
    - Context variables so request_id/instrument reach every agent line
    - ISO timestamps in UTC

    Args:
        json_output: If True, output JSON. If False, output human-readable logs.
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ==============================================================================
# Component Wiring
# ==============================================================================
def build_portfolio_provider(settings: ServiceSettings) -> PortfolioProvider | None:
    creds = settings.credentials
    key, secret = creds.get("alpaca_api_key"), creds.get("alpaca_secret_key")
    if not key or not secret:
        return None
    return AlpacaPortfolioProvider(key, secret, paper=settings.alpaca.paper)


def build_agents(
    settings: ServiceSettings,
    portfolio: PortfolioProvider | None = None,
) -> list[AnalysisAgentProtocol]:
    """Instantiate every credentialed voting unit, in configured order."""
    creds = settings.credentials
    models = settings.models
    timeout = settings.agents.timeout_seconds
    agents: list[AnalysisAgentProtocol] = []

    for unit in settings.available_units():
        if unit == "B2":
            client = OpenAIChatClient(
                creds.get("xai_api_key") or "",
                models.grok,
                base_url=XAI_BASE_URL,
                provider="xai",
            )
            agents.append(SocialSentimentAgent("B2", client, timeout_seconds=timeout))
        elif unit == "M1":
            client = GeminiClient(creds.get("gemini_api_key") or "", models.gemini)
            agents.append(FundamentalAgent("M1", client, timeout_seconds=timeout))
        elif unit == "C3":
            client = ClaudeClient(creds.get("anthropic_api_key") or "", models.claude)
            agents.append(ESGRiskAgent("C3", client, timeout_seconds=timeout))
        elif unit == "R4":
            model = OpenAIChatClient(
                creds.get("mistral_api_key") or "",
                models.mistral,
                base_url=MISTRAL_BASE_URL,
                provider="mistral",
            )
            registry = build_default_registry(YahooFinanceSource(), portfolio)
            agents.append(
                TechnicalAnalysisAgent(
                    "R4",
                    model,
                    registry,
                    max_rounds=settings.agents.tool_loop_max_rounds,
                    timeout_seconds=timeout,
                )
            )
    return agents


def build_arbiter(settings: ServiceSettings) -> Arbiter:
    key = settings.credentials.get("openai_api_key")
    client = (
        OpenAIChatClient(
            key,
            settings.models.arbiter,
            temperature=settings.models.arbiter_temperature,
        )
        if key
        else None
    )
    return Arbiter(
        client,
        timeout_seconds=settings.models.arbiter_timeout_seconds,
        take_profit_pct=settings.decision.take_profit_pct,
        stop_loss_pct=settings.decision.stop_loss_pct,
    )


def build_application(settings: ServiceSettings) -> FastAPI:
    """Wire all components from settings into the HTTP application."""
    log = structlog.get_logger()
    portfolio = build_portfolio_provider(settings)

    context_provider = None
    if "ISABEL" in settings.available_units() and settings.isabel.url:
        token = settings.isabel.token.get_secret_value() if settings.isabel.token else None
        context_provider = IsabelContextProvider(
            settings.isabel.url, token, limit=settings.isabel.limit
        )

    supervisor = Supervisor(
        build_agents(settings, portfolio),
        build_arbiter(settings),
        portfolio_provider=portfolio,
        context_provider=context_provider,
    )
    gate = UnanimityGate(
        min_confidence=settings.decision.min_confidence,
        default_quantity=settings.decision.default_quantity,
    )
    publisher = create_publisher(
        settings.bus.backend,
        redis_url=settings.bus.redis_url,
        topic=settings.bus.topic,
    )

    missing = [u for u in settings.agents.order if u not in settings.available_units()]
    if missing:
        log.warning("Units disabled (no credential)", units=missing)
    if settings.credentials.get("openai_api_key") is None:
        log.warning("Arbiter disabled (no credential), preliminary consensus will be used")

    return create_app(settings, supervisor, gate, publisher)


# ==============================================================================
# Application Bootstrap
# ==============================================================================
@hydra.main(version_base=None, config_path="../../conf", config_name="main")
def main(cfg: DictConfig) -> None:
    """Service entrypoint with Hydra configuration injection.

    Args:
        cfg: Composed configuration from Hydra.
    """
    is_debug: bool = bool(cfg.get("debug", False))
    env: str = str(cfg.get("env", "dev"))
    configure_logging(json_output=env != "dev", log_level="DEBUG" if is_debug else "INFO")
    log = structlog.get_logger()

    try:
        settings = ServiceSettings.from_config(cfg)
    except Exception as e:
        log.error("Configuration resolution failed", error=str(e))
        raise

    if is_debug:
        log.debug("Resolved configuration", config=OmegaConf.to_yaml(cfg))

    log.info(
        "Initializing service",
        service=settings.service.name,
        version=settings.service.version,
        env=env,
        units=settings.available_units(),
        bus=settings.bus.backend,
    )

    app = build_application(settings)
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level="debug" if is_debug else "info",
    )


if __name__ == "__main__":
    main()
