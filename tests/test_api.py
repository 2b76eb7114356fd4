"""Tests for the HTTP front door.

Tests cover:
- Descriptor, health and config endpoints
- Analyze / batch / decide request handling and validation
- Signal publication and publish failure reporting
- Push subscription acknowledgement before background analysis
"""

from __future__ import annotations

import asyncio
import base64
import json
from collections.abc import AsyncIterator

import httpx
import pytest
import pytest_asyncio

from conftest import StubAgent
from magi_core.agents.arbiter import Arbiter
from magi_core.agents.gate import UnanimityGate
from magi_core.agents.protocol import Judgment, TradeSignal
from magi_core.agents.supervisor import Supervisor
from magi_core.api import BackgroundRunner, create_app, decode_push_envelope
from magi_core.common.types import InstrumentId, TradeAction
from magi_core.config import ServiceSettings
from magi_core.execution.bus import MemorySignalPublisher, PublishError


class FailingPublisher:
    backend = "redis"

    def __init__(self) -> None:
        self.closed = False

    async def publish(self, signal: TradeSignal) -> str:
        raise PublishError("Publish failed: connection refused", topic="trade-signals")

    async def close(self) -> None:
        self.closed = True


class GatedAgent(StubAgent):
    """Stub agent that waits for ``release`` before judging."""

    def __init__(self, unit_id: str, signal: TradeAction = TradeAction.BUY) -> None:
        super().__init__(unit_id, signal, 0.9)
        self.release = asyncio.Event()
        self.finished = False

    async def judge(
        self, instrument: InstrumentId, company_name: str, context: str = ""
    ) -> Judgment:
        await self.release.wait()
        judgment = await super().judge(instrument, company_name, context)
        self.finished = True
        return judgment


def _envelope(payload: object) -> bytes:
    data = base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")
    return json.dumps({"message": {"data": data, "messageId": "1"}}).encode("utf-8")


def _unanimous_agents(signal: TradeAction = TradeAction.BUY) -> list[StubAgent]:
    return [
        StubAgent("B2", signal, 0.8),
        StubAgent("M1", signal, 0.9),
        StubAgent("C3", signal, 0.8),
        StubAgent("R4", signal, 0.9),
    ]


# ==============================================================================
# Fixtures
# ==============================================================================
@pytest.fixture
def agents() -> list[StubAgent]:
    return _unanimous_agents()


@pytest.fixture
def publisher() -> MemorySignalPublisher:
    return MemorySignalPublisher()


@pytest.fixture
def runner() -> BackgroundRunner:
    return BackgroundRunner()


def _app(agents: list[StubAgent], publisher: object, runner: BackgroundRunner) -> object:
    return create_app(
        ServiceSettings(),
        Supervisor(agents, Arbiter(None)),
        UnanimityGate(min_confidence=0.7),
        publisher,  # type: ignore[arg-type]
        runner,
    )


@pytest_asyncio.fixture
async def client(
    agents: list[StubAgent], publisher: MemorySignalPublisher, runner: BackgroundRunner
) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=_app(agents, publisher, runner))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ==============================================================================
# Descriptor Endpoint Tests
# ==============================================================================
class TestDescriptorEndpoints:
    """Tests for /, /health and /config."""

    @pytest.mark.asyncio
    async def test_root(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["units"] == ["B2", "M1", "C3", "R4"]

    @pytest.mark.asyncio
    async def test_health(self, client: httpx.AsyncClient) -> None:
        body = (await client.get("/health")).json()

        assert body["status"] == "healthy"
        assert body["service"] == "magi-decision"
        assert body["bus"] == "memory"

    @pytest.mark.asyncio
    async def test_config(self, client: httpx.AsyncClient) -> None:
        body = (await client.get("/config")).json()

        assert body["config"]["minConfidence"] == pytest.approx(0.7)
        assert body["config"]["unanimousRequired"] is True


# ==============================================================================
# Analyze Endpoint Tests
# ==============================================================================
class TestAnalyze:
    """Tests for /analyze and /analyze/batch."""

    @pytest.mark.asyncio
    async def test_analyze(self, client: httpx.AsyncClient, agents: list[StubAgent]) -> None:
        response = await client.post(
            "/analyze",
            json={"symbol": "aapl", "companyName": "Apple Inc.", "agentSubset": ["B2", "m1"]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["instrument"] == "AAPL"
        assert [j["unitId"] for j in body["judgments"]] == ["B2", "M1"]
        assert body["consensus"]["finalSignal"] == "BUY"
        assert agents[2].calls == []

    @pytest.mark.asyncio
    async def test_missing_instrument(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/analyze", json={"companyName": "Apple Inc."})

        assert response.status_code == 400
        assert response.json() == {"error": "instrument required"}

    @pytest.mark.asyncio
    async def test_malformed_body(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/analyze", json={"instrument": ["AAPL"]})

        assert response.status_code == 400
        assert response.json() == {"error": "invalid request body"}

    @pytest.mark.asyncio
    async def test_batch(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/analyze/batch",
            json={"stocks": [{"symbol": "aapl"}, {"symbol": "msft", "companyName": "Microsoft"}]},
        )

        body = response.json()
        assert response.status_code == 200
        assert body["count"] == 2
        assert [r["instrument"] for r in body["results"]] == ["AAPL", "MSFT"]
        assert body["results"][1]["companyName"] == "Microsoft"

    @pytest.mark.asyncio
    async def test_batch_requires_instruments(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/analyze/batch", json={"instruments": []})

        assert response.status_code == 400
        assert response.json() == {"error": "instruments array required"}


# ==============================================================================
# Decide Endpoint Tests
# ==============================================================================
class TestDecide:
    """Tests for /decide."""

    @pytest.mark.asyncio
    async def test_signal_issued_and_published(
        self, client: httpx.AsyncClient, publisher: MemorySignalPublisher
    ) -> None:
        response = await client.post("/decide", json={"instrument": " aapl "})

        body = response.json()
        assert response.status_code == 200
        assert body["decision"] == "signal_issued"
        assert body["instrument"] == "AAPL"
        assert body["action"] == "BUY"
        assert body["published"] is True
        assert body["messageId"] == "trade-signals:1"
        assert body["votes"] == {"BUY": 4, "HOLD": 0, "SELL": 0}
        assert json.loads(publisher.messages[0])["instrument"] == "AAPL"

    @pytest.mark.asyncio
    async def test_no_action_on_dissent(self, publisher: MemorySignalPublisher, runner: BackgroundRunner) -> None:
        agents = [*_unanimous_agents(TradeAction.SELL)[:3], StubAgent("R4", TradeAction.HOLD, 0.9)]
        transport = httpx.ASGITransport(app=_app(agents, publisher, runner))

        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            body = (await c.post("/decide", json={"symbol": "AAPL"})).json()

        assert body["decision"] == "no_action"
        assert body["votes"] == {"BUY": 0, "HOLD": 1, "SELL": 3}
        assert body["reason"].startswith("Not unanimous or low confidence")
        assert publisher.messages == []

    @pytest.mark.asyncio
    async def test_publish_failure_reported(self, agents: list[StubAgent], runner: BackgroundRunner) -> None:
        transport = httpx.ASGITransport(app=_app(agents, FailingPublisher(), runner))

        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            response = await c.post("/decide", json={"instrument": "AAPL"})

        body = response.json()
        assert response.status_code == 200
        assert body["decision"] == "signal_issued"
        assert body["published"] is False
        assert body["messageId"] is None

    @pytest.mark.asyncio
    async def test_missing_instrument(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/decide", json={"instrument": "  "})

        assert response.status_code == 400


# ==============================================================================
# Push Subscription Tests
# ==============================================================================
class TestPushSubscription:
    """Tests for the push endpoints and envelope decoding."""

    @pytest.mark.asyncio
    async def test_ack_before_background_analysis(
        self, publisher: MemorySignalPublisher, runner: BackgroundRunner
    ) -> None:
        agent = GatedAgent("B2")
        transport = httpx.ASGITransport(app=_app([agent], publisher, runner))

        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            response = await c.post("/pubsub/price-update", content=_envelope({"symbol": "nvda"}))

        assert response.status_code == 200
        assert response.text == "OK"
        assert runner.pending == 1
        assert not agent.finished

        agent.release.set()
        await runner.drain()

        assert agent.finished
        assert agent.calls == [("NVDA", "NVDA", "")]
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_legacy_path_and_malformed_message(
        self, client: httpx.AsyncClient, agents: list[StubAgent], runner: BackgroundRunner
    ) -> None:
        response = await client.post("/pubsub", content=b"not json")

        assert response.status_code == 200
        await runner.drain()
        assert runner.pending == 0
        assert agents[0].calls == []

    def test_decode_envelope(self) -> None:
        assert decode_push_envelope(_envelope({"instrument": "AAPL"})) == "AAPL"
        assert decode_push_envelope(_envelope({"price": 1.0})) is None
        assert decode_push_envelope(b"{}") is None
        with pytest.raises(ValueError, match="Malformed push message"):
            decode_push_envelope(b'{"message": {"data": "%%%"}}')


# ==============================================================================
# Lifecycle Tests
# ==============================================================================
class TestLifespan:
    """Tests for application startup and shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown_drains_runner_and_closes_publisher(self, runner: BackgroundRunner) -> None:
        agent = GatedAgent("B2")
        publisher = FailingPublisher()
        app = _app([agent], publisher, runner)

        async with app.router.lifespan_context(app):
            runner.spawn(agent.judge(InstrumentId("AAPL"), "Apple Inc."), name="push:test")
            assert runner.pending == 1
            agent.release.set()

        assert agent.finished
        assert runner.pending == 0
        assert publisher.closed
