"""Tests for configuration resolution and component wiring."""

from __future__ import annotations

from pathlib import Path

import pytest
from omegaconf import OmegaConf
from pydantic import ValidationError

from magi_core.config import ServiceSettings
from magi_core.execution.bus import MemorySignalPublisher
from magi_core.main import build_agents, build_application, build_arbiter

CONF_DIR = Path(__file__).resolve().parents[1] / "magi_core" / "conf"

ENV_KEYS = (
    "PORT",
    "ISABEL_URL",
    "ISABEL_TOKEN",
    "BUS_BACKEND",
    "REDIS_URL",
    "XAI_API_KEY",
    "GEMINI_API_KEY",
    "ANTHROPIC_API_KEY",
    "MISTRAL_API_KEY",
    "OPENAI_API_KEY",
    "ALPACA_API_KEY",
    "ALPACA_SECRET_KEY",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def _load() -> ServiceSettings:
    return ServiceSettings.from_config(OmegaConf.load(CONF_DIR / "main.yaml"))


# ==============================================================================
# Settings Tests
# ==============================================================================
class TestServiceSettings:
    """Tests for ServiceSettings."""

    def test_defaults_from_yaml(self, clean_env: pytest.MonkeyPatch) -> None:
        settings = _load()

        assert settings.server.port == 8080
        assert settings.decision.min_confidence == pytest.approx(0.70)
        assert settings.agents.order == ["ISABEL", "B2", "M1", "C3", "R4"]
        assert settings.bus.backend == "memory"
        assert settings.isabel.url is None
        assert settings.available_units() == []

    def test_environment_enables_units(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("PORT", "9090")
        clean_env.setenv("XAI_API_KEY", "xai-secret")
        clean_env.setenv("MISTRAL_API_KEY", "mistral-secret")
        clean_env.setenv("ISABEL_URL", "https://isabel.example.test")

        settings = _load()

        assert settings.server.port == 9090
        assert settings.available_units() == ["ISABEL", "B2", "R4"]
        assert settings.credentials.get("xai_api_key") == "xai-secret"
        assert "xai-secret" not in repr(settings)

    def test_blank_credential_is_missing(self) -> None:
        settings = ServiceSettings.model_validate({"credentials": {"gemini_api_key": "  "}})

        assert settings.credentials.get("gemini_api_key") is None

    def test_order_normalized(self) -> None:
        settings = ServiceSettings.model_validate({"agents": {"order": [" b2", "m1"]}})

        assert settings.agents.order == ["B2", "M1"]

    @pytest.mark.parametrize(
        "override",
        [
            {"bus": {"backend": "kafka"}},
            {"decision": {"min_confidence": 1.5}},
            {"decision": {"unknown_key": 1}},
        ],
    )
    def test_invalid_values_rejected(self, override: dict) -> None:
        with pytest.raises(ValidationError):
            ServiceSettings.model_validate(override)

    def test_cli_style_override(self, clean_env: pytest.MonkeyPatch) -> None:
        cfg = OmegaConf.merge(
            OmegaConf.load(CONF_DIR / "main.yaml"),
            OmegaConf.from_dotlist(["decision.min_confidence=0.8", "env=prod"]),
        )

        settings = ServiceSettings.from_config(cfg)

        assert settings.env == "prod"
        assert settings.decision.min_confidence == pytest.approx(0.8)

    def test_public_view_has_no_credentials(self) -> None:
        settings = ServiceSettings.model_validate({"credentials": {"openai_api_key": "sk-live"}})

        view = settings.public_view()

        assert view["minConfidence"] == pytest.approx(0.70)
        assert view["unanimousRequired"] is True
        assert "sk-live" not in str(view)


# ==============================================================================
# Wiring Tests
# ==============================================================================
class TestWiring:
    """Tests for the component factories used at startup."""

    def test_agents_follow_configured_order(self) -> None:
        settings = ServiceSettings.model_validate(
            {
                "agents": {"order": ["R4", "B2", "M1"]},
                "credentials": {
                    "xai_api_key": "x",
                    "gemini_api_key": "g",
                    "mistral_api_key": "m",
                },
            }
        )

        agents = build_agents(settings)

        assert [a.unit_id for a in agents] == ["R4", "B2", "M1"]

    def test_arbiter_without_key_is_unconfigured(self) -> None:
        assert build_arbiter(ServiceSettings()).client is None

    def test_arbiter_with_key(self) -> None:
        settings = ServiceSettings.model_validate({"credentials": {"openai_api_key": "sk"}})

        arbiter = build_arbiter(settings)

        assert arbiter.client is not None
        assert arbiter.take_profit_pct == 5.0

    def test_application_defaults_to_memory_bus(self) -> None:
        app = build_application(ServiceSettings())

        assert isinstance(app.state.publisher, MemorySignalPublisher)
        assert app.state.supervisor.unit_ids == []
