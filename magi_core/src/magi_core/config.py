"""Service configuration.

Hydra composes ``conf/main.yaml`` (plus CLI overrides) into a DictConfig.
``ServiceSettings.from_config`` resolves it once at startup into a frozen
model that is then passed by reference to every component. Nothing mutates
it afterwards.

Credentials come from the environment through ``${oc.env:NAME,null}``
interpolation and are held as SecretStr.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Final

from omegaconf import OmegaConf
from pydantic import Field, SecretStr, field_validator

from magi_core.common.types import DomainModel

if TYPE_CHECKING:
    from omegaconf import DictConfig

# ==============================================================================
# Constants
# ==============================================================================
DEFAULT_UNIT_ORDER: Final[list[str]] = ["ISABEL", "B2", "M1", "C3", "R4"]

UNIT_CREDENTIALS: Final[dict[str, str]] = {
    "B2": "xai_api_key",
    "M1": "gemini_api_key",
    "C3": "anthropic_api_key",
    "R4": "mistral_api_key",
}


# ==============================================================================
# Sections
# ==============================================================================
class ServiceInfo(DomainModel):
    name: str = "magi-decision"
    version: str = "1.0.0"


class ServerSettings(DomainModel):
    host: str = "0.0.0.0"  # noqa: S104
    port: int = Field(default=8080, gt=0, lt=65536)


class DecisionSettings(DomainModel):
    """Thresholds of the unanimity gate and order guidance for the arbiter."""

    min_confidence: float = Field(default=0.70, ge=0.0, le=1.0)
    default_quantity: float = Field(default=1.0, gt=0.0)
    take_profit_pct: float = Field(default=5.0, gt=0.0)
    stop_loss_pct: float = Field(default=3.0, gt=0.0)


class AgentSettings(DomainModel):
    order: list[str] = Field(default_factory=lambda: list(DEFAULT_UNIT_ORDER))
    timeout_seconds: float = Field(default=90.0, gt=0.0)
    tool_loop_max_rounds: int = Field(default=3, ge=1)

    @field_validator("order")
    @classmethod
    def upper_ids(cls, v: list[str]) -> list[str]:
        return [unit.strip().upper() for unit in v]


class ModelSettings(DomainModel):
    grok: str = "grok-2-latest"
    gemini: str = "gemini-2.0-flash"
    claude: str = "claude-sonnet-4-20250514"
    mistral: str = "mistral-large-latest"
    arbiter: str = "gpt-4o-mini"
    arbiter_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    arbiter_timeout_seconds: float = Field(default=60.0, gt=0.0)


class IsabelSettings(DomainModel):
    url: str | None = None
    token: SecretStr | None = None
    limit: int = Field(default=15, ge=1)


class BusSettings(DomainModel):
    backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    topic: str = "trade-signals"

    @field_validator("backend")
    @classmethod
    def known_backend(cls, v: str) -> str:
        if v not in ("memory", "redis"):
            msg = f"bus.backend must be 'memory' or 'redis', got {v!r}"
            raise ValueError(msg)
        return v


class AlpacaSettings(DomainModel):
    paper: bool = True


class Credentials(DomainModel):
    """External API keys. A missing key disables the matching component."""

    xai_api_key: SecretStr | None = None
    gemini_api_key: SecretStr | None = None
    anthropic_api_key: SecretStr | None = None
    mistral_api_key: SecretStr | None = None
    openai_api_key: SecretStr | None = None
    alpaca_api_key: SecretStr | None = None
    alpaca_secret_key: SecretStr | None = None

    @field_validator("*", mode="before")
    @classmethod
    def blank_is_missing(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def get(self, name: str) -> str | None:
        """Plain value of a credential, or None when absent."""
        secret: SecretStr | None = getattr(self, name)
        return secret.get_secret_value() if secret is not None else None


# ==============================================================================
# Root Settings
# ==============================================================================
class ServiceSettings(DomainModel):
    """Resolved, immutable service configuration."""

    env: str = "dev"
    debug: bool = False
    service: ServiceInfo = Field(default_factory=ServiceInfo)
    server: ServerSettings = Field(default_factory=ServerSettings)
    decision: DecisionSettings = Field(default_factory=DecisionSettings)
    agents: AgentSettings = Field(default_factory=AgentSettings)
    models: ModelSettings = Field(default_factory=ModelSettings)
    isabel: IsabelSettings = Field(default_factory=IsabelSettings)
    bus: BusSettings = Field(default_factory=BusSettings)
    alpaca: AlpacaSettings = Field(default_factory=AlpacaSettings)
    credentials: Credentials = Field(default_factory=Credentials)

    @classmethod
    def from_config(cls, cfg: DictConfig) -> ServiceSettings:
        """Resolve interpolations and validate.

        Raises:
            omegaconf.errors.InterpolationResolutionError: Unresolvable value.
            pydantic.ValidationError: Invalid or unknown keys.
        """
        data = OmegaConf.to_container(cfg, resolve=True)
        return cls.model_validate(data)

    def available_units(self) -> list[str]:
        """Units of ``agents.order`` that can actually run.

        Voting units need their credential; ISABEL needs a search URL.
        """
        available: list[str] = []
        for unit in self.agents.order:
            if unit == "ISABEL":
                if self.isabel.url:
                    available.append(unit)
            elif unit in UNIT_CREDENTIALS:
                if self.credentials.get(UNIT_CREDENTIALS[unit]):
                    available.append(unit)
        return available

    def public_view(self) -> dict[str, Any]:
        """Decision thresholds safe to expose over HTTP."""
        return {
            "minConfidence": self.decision.min_confidence,
            "defaultQuantity": self.decision.default_quantity,
            "takeProfitPct": self.decision.take_profit_pct,
            "stopLossPct": self.decision.stop_loss_pct,
            "unanimousRequired": True,
            "unitOrder": self.agents.order,
            "toolLoopMaxRounds": self.agents.tool_loop_max_rounds,
            "busBackend": self.bus.backend,
        }
