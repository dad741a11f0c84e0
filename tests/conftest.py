"""Shared test fixtures."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path  # noqa: TCH003
from typing import Any

import pytest

from digitbot.config.loader import ConfigLoader
from digitbot.config.settings import BotConfig
from digitbot.core.context import BotContext
from digitbot.interfaces import BotEvent, SendOutcome
from digitbot.models.trade import EntryType, Trade
from digitbot.strategies import registry

registry.load_builtin()


class FakeTransport:
    """Records outbound messages; returns a configurable SendOutcome."""

    def __init__(self, outcome: SendOutcome = SendOutcome.SENT) -> None:
        self.sent: list[dict[str, Any]] = []
        self.outcome = outcome
        self.connected = True

    async def send(self, message: dict[str, Any]) -> SendOutcome:
        self.sent.append(message)
        return self.outcome

    @property
    def is_connected(self) -> bool:
        return self.connected

    def of_kind(self, key: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if key in m]


class RecordingSink:
    """EventSink that keeps every published event."""

    def __init__(self) -> None:
        self.events: list[tuple[BotEvent, dict[str, Any]]] = []

    def publish(self, event: BotEvent, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def of_kind(self, event: BotEvent) -> list[dict[str, Any]]:
        return [payload for e, payload in self.events if e is event]


@pytest.fixture()
def config_dir(tmp_path: Path) -> Path:
    """Create a temp config directory with default.toml."""
    config = tmp_path / "config"
    config.mkdir()

    default_toml = config / "default.toml"
    default_toml.write_text(
        """\
[bot]
strategy = "even_odd"
ack_timeout_seconds = 30

[trading]
symbol = "1HZ10V"
duration = 1
duration_unit = "t"
currency = "USD"
payout = 0.95
profit_goal = 0

[martingale]
base_stake = 0.35
multiplier = 2.2
max_martingale = 8

[connection]
ws_url = "wss://ws.example.test/websockets/v3"
app_id = 1089
max_reconnect_attempts = 5
reconnect_delay_seconds = 5.0
max_reconnect_delay_seconds = 30.0
keepalive_interval_seconds = 30.0

[strategy.even_odd]
min_even = 3
min_odd = 3

[strategy.gladiator]
trading_mode = "balanced"
risk_mode = "optimized"
"""
    )
    return config


@pytest.fixture()
def config_loader(config_dir: Path) -> ConfigLoader:
    """ConfigLoader with test config."""
    loader = ConfigLoader(config_dir=config_dir, env="test")
    loader.load()
    return loader


@pytest.fixture()
def bot_config() -> BotConfig:
    """Even/odd config with short runs so tests stay small."""
    return BotConfig(
        strategy="even_odd",
        base_stake=Decimal("1.00"),
        multiplier=Decimal("2"),
        max_martingale=3,
        params={"min_even": 2, "min_odd": 2},
    )


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def context(bot_config: BotConfig, sink: RecordingSink) -> BotContext:
    ctx = BotContext(config=bot_config, events=sink)
    ctx.state.connected = True
    ctx.state.balance = Decimal("100.00")
    ctx.state.initial_balance = Decimal("100.00")
    return ctx


@pytest.fixture()
def sample_trade() -> Trade:
    return Trade(
        id=1,
        stake=Decimal("1.00"),
        entry_digit=4,
        entry_type=EntryType.OVER,
        barrier=3,
        payout=Decimal("0.95"),
    )
