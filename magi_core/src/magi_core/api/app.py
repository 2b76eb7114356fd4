"""HTTP front door of the MAGI decision service.

Routes:
    GET  /                      service descriptor
    GET  /health                liveness
    GET  /config                decision thresholds (no credentials)
    POST /analyze               one instrument -> AnalysisResult
    POST /analyze/batch         several instruments, processed in order
    POST /decide                pipeline + unanimity gate + bus publish
    POST /pubsub/price-update   push subscription: ack first, analyse later
    POST /pubsub                legacy alias of the push endpoint
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from magi_core.common.types import normalize_instrument
from magi_core.execution.bus import PublishError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Coroutine

    from magi_core.agents.gate import UnanimityGate
    from magi_core.agents.supervisor import Supervisor
    from magi_core.config import ServiceSettings
    from magi_core.execution.bus import SignalPublisher

log = structlog.get_logger()


# ==============================================================================
# Request Models
# ==============================================================================
class _Body(BaseModel):
    model_config = ConfigDict(extra="ignore")


class AnalyzeRequest(_Body):
    instrument: str | None = Field(
        default=None, validation_alias=AliasChoices("instrument", "symbol")
    )
    company_name: str | None = Field(
        default=None, validation_alias=AliasChoices("companyName", "company_name")
    )
    context: str = ""
    units: list[str] | None = Field(
        default=None, validation_alias=AliasChoices("agentSubset", "units")
    )


class BatchItem(_Body):
    instrument: str | None = Field(
        default=None, validation_alias=AliasChoices("instrument", "symbol")
    )
    company_name: str | None = Field(
        default=None, validation_alias=AliasChoices("companyName", "company_name")
    )


class BatchRequest(_Body):
    instruments: list[BatchItem] = Field(
        default_factory=list, validation_alias=AliasChoices("instruments", "stocks")
    )
    context: str = ""
    units: list[str] | None = Field(
        default=None, validation_alias=AliasChoices("agentSubset", "units")
    )


class DecideRequest(_Body):
    instrument: str | None = Field(
        default=None, validation_alias=AliasChoices("instrument", "symbol")
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _internal_error(path: str, exc: Exception) -> JSONResponse:
    log.error("Request failed", path=path, error=str(exc), exc_info=exc)
    return _error(500, str(exc) or type(exc).__name__)


# ==============================================================================
# Background Work
# ==============================================================================
class BackgroundRunner:
    """Holds references to fire-and-forget tasks until they finish.

    Failures are logged and otherwise unobservable to the caller that
    scheduled the task.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            log.warning("Background task cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            log.error(
                "Background task failed",
                task=task.get_name(),
                error=str(exc),
                exc_info=exc,
            )

    async def drain(self) -> None:
        """Wait for every pending task (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def decode_push_envelope(body: bytes) -> str | None:
    """Extract the instrument from a push envelope ``{message: {data: <b64>}}``.

    Returns None when the envelope carries no instrument.

    Raises:
        ValueError: Body or payload is not valid JSON/base64.
    """
    try:
        envelope = json.loads(body or b"{}")
        data = (envelope.get("message") or {}).get("data")
        if not data:
            return None
        payload = json.loads(base64.b64decode(data, validate=True).decode("utf-8"))
    except (json.JSONDecodeError, binascii.Error, UnicodeDecodeError, AttributeError) as e:
        msg = f"Malformed push message: {e}"
        raise ValueError(msg) from e

    if not isinstance(payload, dict):
        return None
    instrument = payload.get("instrument") or payload.get("symbol")
    return str(instrument) if instrument else None


# ==============================================================================
# Application Factory
# ==============================================================================
def create_app(
    settings: ServiceSettings,
    supervisor: Supervisor,
    gate: UnanimityGate,
    publisher: SignalPublisher,
    runner: BackgroundRunner | None = None,
) -> FastAPI:
    """Build the FastAPI application around already-wired components.

    On shutdown, pending push analyses are awaited before the publisher
    is closed.
    """
    background = runner or BackgroundRunner()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info("Decision service started", units=supervisor.unit_ids, bus=publisher.backend)
        yield
        log.info("Draining background analyses", pending=background.pending)
        await background.drain()
        await publisher.close()
        log.info("Decision service stopped")

    app = FastAPI(
        title=settings.service.name,
        version=settings.service.version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.supervisor = supervisor
    app.state.gate = gate
    app.state.publisher = publisher
    app.state.runner = background

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        log.warning("Invalid request body", path=request.url.path, errors=len(exc.errors()))
        return _error(400, "invalid request body")

    @app.get("/")
    async def root() -> dict[str, Any]:
        return {
            "service": settings.service.name,
            "version": settings.service.version,
            "endpoints": {
                "health": "GET /health",
                "config": "GET /config",
                "analyze": "POST /analyze",
                "batch": "POST /analyze/batch",
                "decide": "POST /decide",
                "pubsub": "POST /pubsub/price-update",
            },
            "units": supervisor.unit_ids,
        }

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "healthy",
            "service": settings.service.name,
            "version": settings.service.version,
            "bus": publisher.backend,
        }

    @app.get("/config")
    async def config() -> dict[str, Any]:
        return {
            "service": settings.service.name,
            "version": settings.service.version,
            "config": settings.public_view(),
        }

    @app.post("/analyze")
    async def analyze(body: AnalyzeRequest) -> Any:
        if not body.instrument or not body.instrument.strip():
            return _error(400, "instrument required")
        try:
            result = await supervisor.run(
                body.instrument,
                body.company_name,
                context=body.context,
                units=body.units,
            )
        except Exception as e:
            return _internal_error("/analyze", e)
        return result.to_wire()

    @app.post("/analyze/batch")
    async def analyze_batch(body: BatchRequest) -> Any:
        items = [i for i in body.instruments if i.instrument and i.instrument.strip()]
        if not items:
            return _error(400, "instruments array required")
        try:
            results = await supervisor.run_batch(
                [(i.instrument, i.company_name) for i in items],
                context=body.context,
                units=body.units,
            )
        except Exception as e:
            return _internal_error("/analyze/batch", e)
        return {"count": len(results), "results": [r.to_wire() for r in results]}

    @app.post("/decide")
    async def decide(body: DecideRequest) -> Any:
        if not body.instrument or not body.instrument.strip():
            return _error(400, "instrument required")
        instrument = normalize_instrument(body.instrument)
        try:
            result = await supervisor.run(instrument, instrument)
        except Exception as e:
            return _internal_error("/decide", e)
        outcome = gate.evaluate(result.instrument, result.judgments)

        if outcome.signal is None:
            return {
                "decision": "no_action",
                "instrument": instrument,
                "reason": outcome.reason,
                "votes": outcome.votes_wire(),
                "avgConfidence": outcome.avg_confidence,
            }

        published = False
        message_id: str | None = None
        try:
            message_id = await publisher.publish(outcome.signal)
            published = True
        except PublishError as e:
            log.error("Signal not published", instrument=instrument, error=str(e))

        return {
            "decision": "signal_issued",
            "instrument": instrument,
            "action": outcome.action.value,
            "signal": outcome.signal.to_wire(),
            "votes": outcome.votes_wire(),
            "published": published,
            "messageId": message_id,
        }

    async def process_push(body: bytes) -> None:
        instrument = decode_push_envelope(body)
        if instrument is None:
            log.warning("Push message without instrument")
            return
        result = await supervisor.run(instrument, instrument)
        log.info(
            "Push analysis complete",
            instrument=result.instrument,
            signal=result.consensus.final_signal.value,
            strength=result.consensus.strength.value,
        )

    async def acknowledge_push(request: Request) -> PlainTextResponse:
        body = await request.body()
        log.info("Push message received", path=request.url.path)
        background.spawn(process_push(body), name=f"push:{request.url.path}")
        return PlainTextResponse("OK", status_code=200)

    app.add_api_route("/pubsub/price-update", acknowledge_push, methods=["POST"])
    app.add_api_route("/pubsub", acknowledge_push, methods=["POST"])

    return app
