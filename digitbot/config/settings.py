"""Validated bot and connection settings built from the TOML config."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field, ValidationError

from digitbot.config.loader import ConfigError
from digitbot.core.logging import get_logger

if TYPE_CHECKING:
    from digitbot.config.loader import ConfigLoader

log = get_logger(__name__)

MIN_STAKE = Decimal("0.35")
MIN_MULTIPLIER = Decimal("1.1")

# Keys under [strategy.<name>] that are not strategy parameters.
_MODE_KEYS = ("trading_mode", "risk_mode")

# Preset mode and the explicit key it would override.
_MODE_OVERRIDES = (("risk_mode", "multiplier"), ("trading_mode", "params"))


def _format_errors(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
        for err in exc.errors()
    )


class BotConfig(BaseModel):
    """Trading configuration. Immutable; updates produce a new instance."""

    strategy: str = "even_odd"
    symbol: str = Field(default="1HZ10V", min_length=1)
    duration: int = Field(default=1, ge=1)
    duration_unit: Literal["t", "s", "m"] = "t"
    currency: str = "USD"
    payout: Decimal = Field(default=Decimal("0.95"), gt=0, le=5)
    base_stake: Decimal = Field(default=MIN_STAKE, ge=MIN_STAKE)
    multiplier: Decimal = Field(default=Decimal("2.2"), ge=MIN_MULTIPLIER)
    max_martingale: int = Field(default=8, ge=1, le=20)
    profit_goal: Decimal = Field(default=Decimal("0"), ge=0)
    ack_timeout_seconds: int = Field(default=30, ge=0)
    trading_mode: str | None = None
    risk_mode: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @classmethod
    def from_loader(cls, loader: ConfigLoader, **overrides: Any) -> BotConfig:
        """Build from [bot], [trading], [martingale] and [strategy.<name>].

        Raises:
            ConfigError: If any value is missing or out of range.
        """
        raw: dict[str, Any] = {}
        for section in ("bot", "trading", "martingale"):
            raw.update(loader.get(section, {}) or {})
        raw.update({k: v for k, v in overrides.items() if v is not None})

        strategy = raw.get("strategy", "even_odd")
        section = dict(loader.get(f"strategy.{strategy}", {}) or {})
        for key in _MODE_KEYS:
            if key in section and key not in raw:
                raw[key] = section[key]
            section.pop(key, None)
        raw["params"] = {**section, **raw.get("params", {})}

        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            msg = f"Config validation failed: {_format_errors(exc)}"
            raise ConfigError(msg) from exc

    def merged(self, partial: dict[str, Any]) -> BotConfig:
        """Return a validated copy with ``partial`` applied.

        ``params`` is merged key-by-key; switching strategy drops the old
        strategy's params and modes unless ``partial`` provides new ones.
        An explicit ``multiplier`` clears the current risk mode and explicit
        ``params`` clear the current trading mode, since the preset would
        otherwise replace them.

        Raises:
            ConfigError: If the resulting config is invalid, or ``partial``
                sets a mode together with the value that mode presets.
        """
        data = self.model_dump()
        partial = dict(partial)
        new_params = partial.pop("params", None) or {}
        if partial.get("strategy", self.strategy) != self.strategy:
            data["params"] = {}
            data["trading_mode"] = None
            data["risk_mode"] = None

        explicit = {"multiplier": "multiplier" in partial, "params": bool(new_params)}
        for mode_key, key in _MODE_OVERRIDES:
            if not explicit[key]:
                continue
            if partial.get(mode_key) is not None:
                msg = f"Cannot set {key} together with {mode_key}: the mode presets {key}"
                raise ConfigError(msg)
            if mode_key not in partial and data[mode_key] is not None:
                log.warning(
                    "config.mode_cleared",
                    mode_key=mode_key,
                    mode=data[mode_key],
                    overridden_by=key,
                )
                data[mode_key] = None
        data.update(partial)
        data["params"] = {**data["params"], **new_params}
        try:
            return BotConfig.model_validate(data)
        except ValidationError as exc:
            msg = f"Config validation failed: {_format_errors(exc)}"
            raise ConfigError(msg) from exc

    def summary(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ConnectionSettings(BaseModel):
    """Venue websocket endpoint and reconnect policy."""

    ws_url: str = "wss://ws.derivws.com/websockets/v3"
    app_id: int = 1089
    max_reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_delay_seconds: float = Field(default=5.0, gt=0)
    max_reconnect_delay_seconds: float = Field(default=30.0, gt=0)
    backoff_factor: float = Field(default=1.5, ge=1)
    keepalive_interval_seconds: float = Field(default=30.0, ge=0)

    model_config = {"frozen": True}

    @property
    def url(self) -> str:
        separator = "&" if "?" in self.ws_url else "?"
        return f"{self.ws_url}{separator}app_id={self.app_id}"

    @classmethod
    def from_loader(cls, loader: ConfigLoader) -> ConnectionSettings:
        try:
            return cls.model_validate(loader.get("connection", {}) or {})
        except ValidationError as exc:
            msg = f"Config validation failed: {_format_errors(exc)}"
            raise ConfigError(msg) from exc
