"""digitbot orchestrator: wires transport, tick feed, strategy and lifecycle.

Inbound venue messages arrive one at a time through ``DigitBot.dispatch``
and are routed to the tick feed and the trade lifecycle manager. The
command methods (connect, start, stop, update_config, switch_strategy,
reset_stats, clear_digits) are what a dashboard or the CLI drives; they
return a CommandResult instead of raising.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING, Any

from digitbot.config.loader import ConfigError, ConfigLoader
from digitbot.config.settings import BotConfig, ConnectionSettings
from digitbot.core.context import BotContext, LogEventSink
from digitbot.core.logging import get_logger
from digitbot.data.deriv_ws import ConnectionState, DerivConnection
from digitbot.data.tick_feed import TickFeed
from digitbot.execution.lifecycle import TradeLifecycleManager
from digitbot.interfaces import BotEvent, CommandResult
from digitbot.models.messages import (
    AuthorizeMessage,
    BalanceMessage,
    BuyMessage,
    ConnectionLost,
    ErrorMessage,
    ProposalMessage,
    TickMessage,
    balance_request,
)
from digitbot.strategies import registry

if TYPE_CHECKING:
    from digitbot.interfaces import EventSink
    from digitbot.models.messages import InboundMessage

logger = get_logger(__name__)

# Keys a usable config directory must define.
REQUIRED_KEYS = ["trading.symbol", "martingale.base_stake", "connection.ws_url"]


class DigitBot:
    """One trading session against the venue."""

    def __init__(
        self,
        config: BotConfig,
        connection: ConnectionSettings | None = None,
        events: EventSink | None = None,
        transport: DerivConnection | None = None,
        auto_start: bool = True,
    ) -> None:
        registry.load_builtin()
        self._ctx = BotContext(config=config, events=events or LogEventSink())
        self._connection = transport or DerivConnection(connection or ConnectionSettings())
        self._connection.set_dispatch(self.dispatch)
        self._tick_feed = TickFeed(self._connection)
        strategy = registry.create(config.strategy, config)
        self._manager = TradeLifecycleManager(self._ctx, self._connection, strategy)
        self._auto_start = auto_start
        self._token: str | None = None
        self._exhausted = False
        self._shutdown_event = asyncio.Event()

    @property
    def context(self) -> BotContext:
        return self._ctx

    @property
    def manager(self) -> TradeLifecycleManager:
        return self._manager

    @property
    def tick_feed(self) -> TickFeed:
        return self._tick_feed

    @property
    def connection(self) -> DerivConnection:
        return self._connection

    def status(self) -> dict[str, Any]:
        return {
            **self._manager.snapshot(),
            "connection": self._connection.stats(),
            "config": self._ctx.config.summary(),
            "symbol": self._tick_feed.symbol,
            "last_digits": self._tick_feed.recent_digits,
        }

    # ------------------------------------------------------------------
    # Inbound dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, message: InboundMessage) -> None:
        """Route one inbound message. Called by the transport, in arrival order."""
        if isinstance(message, TickMessage):
            digit = self._tick_feed.on_tick(message)
            if digit is not None:
                await self._manager.on_tick(digit, message.epoch)
        elif isinstance(message, ProposalMessage):
            await self._manager.on_proposal(message)
        elif isinstance(message, BuyMessage):
            self._manager.on_buy(message)
        elif isinstance(message, BalanceMessage):
            self._manager.on_balance(message)
        elif isinstance(message, AuthorizeMessage):
            await self._on_authorized(message)
        elif isinstance(message, ErrorMessage):
            if message.msg_type == "authorize":
                logger.error("bot.authorize_failed", error=message.message, code=message.code)
                self._ctx.publish(
                    BotEvent.LOG_LINE,
                    {"level": "error", "message": f"authorization failed: {message.message}"},
                )
            else:
                self._manager.on_error(message)
        elif isinstance(message, ConnectionLost):
            self._manager.on_connection_lost(message)
            if not message.will_retry:
                self._exhausted = True
                self._shutdown_event.set()

    async def _on_authorized(self, message: AuthorizeMessage) -> None:
        self._manager.on_authorized(message)
        await self._connection.send(balance_request())

        symbol = self._ctx.config.symbol
        if self._tick_feed.symbol == symbol:
            await self._tick_feed.resubscribe()
        else:
            await self._tick_feed.subscribe(symbol)

        if self._auto_start:
            self._auto_start = False
            result = self._manager.start()
            logger.info("bot.auto_start", ok=result.ok, message=result.message)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def connect(self, token: str | None = None) -> CommandResult:
        token = token or self._token
        if not token:
            return CommandResult(False, "an API token is required")
        self._token = token
        self._exhausted = False
        await self._connection.connect(token)
        return CommandResult(True, "connecting")

    def start(self) -> CommandResult:
        return self._manager.start()

    def stop(self) -> CommandResult:
        return self._manager.stop()

    def reset_stats(self) -> CommandResult:
        return self._manager.reset_stats()

    def clear_digits(self) -> CommandResult:
        self._tick_feed.clear_history()
        return CommandResult(True, "digit history cleared")

    async def switch_strategy(self, name: str) -> CommandResult:
        return await self.update_config({"strategy": name})

    async def update_config(self, partial: dict[str, Any]) -> CommandResult:
        """Validate and apply a partial config; the prior config stays on failure."""
        current = self._ctx.config
        try:
            new = current.merged(partial)
        except ConfigError as exc:
            logger.warning("bot.config_rejected", error=str(exc), keys=sorted(partial))
            return CommandResult(False, str(exc))

        symbol_changed = new.symbol != current.symbol
        if symbol_changed and self._manager.active_trade is not None:
            return CommandResult(False, "cannot change symbol while a trade is outstanding")

        if new.strategy != current.strategy:
            result = self._switch(new)
        else:
            result = self._manager.apply_config(new)

        if result.ok and symbol_changed and self._connection.is_connected:
            await self._tick_feed.subscribe(new.symbol)
        return result

    def _switch(self, config: BotConfig) -> CommandResult:
        try:
            strategy = registry.create(config.strategy, config)
        except KeyError as exc:
            return CommandResult(False, str(exc.args[0]))
        except ConfigError as exc:
            logger.warning("bot.config_rejected", error=str(exc), strategy=config.strategy)
            return CommandResult(False, str(exc))
        return self._manager.switch_strategy(strategy, config)

    # ------------------------------------------------------------------
    # Process lifetime
    # ------------------------------------------------------------------

    async def run(self, token: str) -> int:
        """Connect and trade until a shutdown signal or reconnect exhaustion."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._request_shutdown, sig)

        logger.info(
            "bot_start",
            strategy=self._ctx.config.strategy,
            symbol=self._ctx.config.symbol,
        )
        await self.connect(token)
        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            logger.info("bot_cancelled")
        finally:
            await self.shutdown()

        return 1 if self._exhausted else 0

    def _request_shutdown(self, sig: signal.Signals) -> None:
        """Handle OS signal for graceful shutdown."""
        logger.info("shutdown_requested", signal=sig.name)
        self._shutdown_event.set()

    async def shutdown(self) -> None:
        self._manager.stop("shutdown")
        if self._connection.state is not ConnectionState.IDLE:
            await self._connection.disconnect()
        state = self._ctx.state
        logger.info(
            "bot_stopped",
            balance=str(state.balance),
            profit=str(state.stats.profit),
            total_trades=state.stats.total_trades,
            wins=state.stats.wins,
            losses=state.stats.losses,
            exhausted=self._exhausted,
        )


def run_bot(
    token: str,
    strategy: str | None = None,
    symbol: str | None = None,
    config_dir: str = "config",
    env: str | None = None,
) -> int:
    """Run the trading bot.

    Args:
        token: Venue API token.
        strategy: Strategy name; defaults to ``bot.strategy`` from config.
        symbol: Tick symbol; defaults to ``trading.symbol`` from config.
        config_dir: Path to config directory.
        env: Environment name.

    Returns:
        Exit code (0 = clean shutdown, 1 = reconnect attempts exhausted).
    """
    loader = ConfigLoader(config_dir=config_dir, env=env)
    loader.load()
    loader.validate_keys(REQUIRED_KEYS)
    loader.load_strategy(strategy or loader.get("bot.strategy", "even_odd"))

    config = BotConfig.from_loader(loader, strategy=strategy, symbol=symbol)
    connection = ConnectionSettings.from_loader(loader)

    bot = DigitBot(config=config, connection=connection)
    return asyncio.run(bot.run(token))
