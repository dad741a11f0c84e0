"""Trade lifecycle manager: one trade at a time, proposal to settlement.

Per trade the phases are::

    NO_ORDER -> PROPOSAL_REQUESTED -> PURCHASE_REQUESTED -> OPEN -> SETTLED

Only one trade may be outstanding (``sent`` or ``open``). ``pending_entry``
is set from order submission until the purchase is confirmed.

Settlement timing: tick-duration contracts settle on the ``duration``-th
tick after purchase confirmation; second and minute contracts settle on
the first tick whose epoch reaches ``purchase_time + duration``.

A trade still unconfirmed ``ack_timeout_seconds`` (by tick epoch) after
submission is abandoned: it keeps its ``sent`` status, gets an
``abandon_reason`` and leaves the active slot, so trading can resume.
"""

from __future__ import annotations

from collections import deque
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

from digitbot.config.loader import ConfigError
from digitbot.core.logging import get_logger, log_trade_event
from digitbot.interfaces import BotEvent, CommandResult, SendOutcome
from digitbot.models.messages import buy_request, proposal_request
from digitbot.models.state import TradeStats
from digitbot.models.trade import Trade, TradeStatus, quantize_money
from digitbot.risk.guards import check_profit_goal, check_stake_within_balance

if TYPE_CHECKING:
    from digitbot.config.settings import BotConfig
    from digitbot.core.context import BotContext
    from digitbot.interfaces import MessageTransport
    from digitbot.models.messages import (
        AuthorizeMessage,
        BalanceMessage,
        BuyMessage,
        ConnectionLost,
        ErrorMessage,
        ProposalMessage,
    )
    from digitbot.models.state import BotState
    from digitbot.models.trade import Decision
    from digitbot.strategies.base import BaseStrategy, StrategyState

log = get_logger(__name__)

HISTORY_SIZE = 100

_UNIT_SECONDS = {"s": 1, "m": 60}

# Venue request types whose errors belong to the active trade.
_TRADE_MSG_TYPES = frozenset({"proposal", "buy"})


class LifecyclePhase(str, Enum):
    NO_ORDER = "no_order"
    PROPOSAL_REQUESTED = "proposal_requested"
    PURCHASE_REQUESTED = "purchase_requested"
    OPEN = "open"
    SETTLED = "settled"


class TradeLifecycleManager:
    """Owns BotState, the active trade and the active strategy's state."""

    def __init__(
        self,
        context: BotContext,
        transport: MessageTransport,
        strategy: BaseStrategy,
        history_size: int = HISTORY_SIZE,
    ) -> None:
        self._ctx = context
        self._transport = transport
        self._strategy = strategy
        self._strategy_state = strategy.reset()
        self._active: Trade | None = None
        self._phase = LifecyclePhase.NO_ORDER
        self._next_id = 1
        self._history: deque[Trade] = deque(maxlen=history_size)
        # Set when a venue balance push lands while the active trade is open.
        self._balance_synced = False

    @property
    def state(self) -> BotState:
        return self._ctx.state

    @property
    def config(self) -> BotConfig:
        return self._ctx.config

    @property
    def strategy(self) -> BaseStrategy:
        return self._strategy

    @property
    def strategy_state(self) -> StrategyState:
        return self._strategy_state

    @property
    def phase(self) -> LifecyclePhase:
        return self._phase

    @property
    def active_trade(self) -> Trade | None:
        return self._active

    @property
    def outstanding_count(self) -> int:
        return 1 if self._active is not None and self._active.is_outstanding else 0

    @property
    def history(self) -> list[Trade]:
        return list(self._history)

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self.state.snapshot(),
            "phase": self._phase.value,
            "active_trade": self._active.summary() if self._active else None,
            "strategy": self._strategy.status(self._strategy_state),
        }

    # ------------------------------------------------------------------
    # Inbound venue events
    # ------------------------------------------------------------------

    async def on_tick(self, digit: int, epoch: int) -> None:
        """Advance the active trade, then maybe open a new one on this tick."""
        self._check_ack_timeout(epoch)

        trade = self._active
        if trade is not None and trade.status is TradeStatus.OPEN:
            trade = trade.model_copy(update={"ticks_observed": trade.ticks_observed + 1})
            self._active = trade
            if trade.settlement_reached(epoch):
                self._settle(trade, digit)

        if not self.state.running or self.state.pending_entry or self._active is not None:
            return

        decision = self._strategy.process_signal(digit, self._strategy_state)
        if decision.should_trade:
            await self._submit(decision, digit, epoch)

    async def on_proposal(self, message: ProposalMessage) -> None:
        """Buy at the quoted price as soon as the proposal arrives."""
        trade = self._active
        if not self._is_ack_for(trade, message.req_id, LifecyclePhase.PROPOSAL_REQUESTED):
            log.warning(
                "lifecycle.stale_proposal",
                proposal_id=message.id,
                req_id=message.req_id,
                active_id=trade.id if trade else None,
            )
            return
        assert trade is not None

        trade = trade.model_copy(
            update={"proposal_id": message.id, "ask_price": message.ask_price},
        )
        self._active = trade
        self._phase = LifecyclePhase.PURCHASE_REQUESTED
        log_trade_event("proposal", trade.id, proposal_id=message.id, ask_price=str(message.ask_price))

        outcome = await self._transport.send(
            buy_request(message.id, message.ask_price, req_id=trade.id),
        )
        if outcome is SendOutcome.FAILED:
            self._abandon("buy request could not be sent")

    def on_buy(self, message: BuyMessage) -> None:
        """Purchase confirmed: the trade is open and the entry gate lifts."""
        trade = self._active
        if not self._is_ack_for(trade, message.req_id, LifecyclePhase.PURCHASE_REQUESTED):
            log.warning(
                "lifecycle.late_purchase",
                contract_id=message.contract_id,
                req_id=message.req_id,
                active_id=trade.id if trade else None,
            )
            self._ctx.publish(
                BotEvent.LOG_LINE,
                {
                    "level": "error",
                    "message": f"untracked open contract {message.contract_id}",
                    "contract_id": message.contract_id,
                },
            )
            return
        assert trade is not None

        update: dict[str, Any] = {
            "status": TradeStatus.OPEN,
            "contract_id": message.contract_id,
            "buy_price": message.buy_price,
            "purchase_time": message.purchase_time,
        }
        unit = self.config.duration_unit
        if unit == "t":
            update["expiry_ticks"] = self.config.duration
        else:
            start = message.purchase_time if message.purchase_time is not None else trade.sent_epoch
            if start is not None:
                update["expiry_epoch"] = start + self.config.duration * _UNIT_SECONDS[unit]
        trade = trade.model_copy(update=update)

        self._active = trade
        self._phase = LifecyclePhase.OPEN
        self.state.pending_entry = False
        self._balance_synced = False
        log_trade_event(
            "purchase",
            trade.id,
            contract_id=message.contract_id,
            buy_price=str(message.buy_price),
            expiry_ticks=trade.expiry_ticks,
            expiry_epoch=trade.expiry_epoch,
        )
        self._publish_state()

    def on_error(self, message: ErrorMessage) -> None:
        """Venue rejection. A rejected unconfirmed trade is abandoned, never settled."""
        log.error(
            "lifecycle.venue_error",
            code=message.code,
            error=message.message,
            msg_type=message.msg_type,
            req_id=message.req_id,
        )
        self._ctx.publish(BotEvent.LOG_LINE, {"level": "error", "message": message.message})
        # Every venue error lifts the entry gate; an in-flight trade still holds the slot.
        self.state.pending_entry = False

        trade = self._active
        if trade is None or trade.status is not TradeStatus.SENT:
            return
        related = message.req_id == trade.id or (
            message.req_id is None and message.msg_type in _TRADE_MSG_TYPES
        )
        if related:
            self._abandon(f"venue error: {message.message}")

    def on_authorized(self, message: AuthorizeMessage) -> None:
        self.state.connected = True
        self.state.currency = message.currency
        if message.balance is not None:
            self._apply_balance(message.balance)
        self._publish_state()

    def on_balance(self, message: BalanceMessage) -> None:
        self.state.currency = message.currency
        if self._active is not None and self._active.status is TradeStatus.OPEN:
            self._balance_synced = True
        self._apply_balance(message.balance)
        self._publish_state()

    def on_connection_lost(self, message: ConnectionLost) -> None:
        self.state.connected = False
        if not message.will_retry:
            self._halt(
                f"connection lost after {message.attempts} reconnect attempts",
                guard="transport",
            )
        self._publish_state()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def start(self) -> CommandResult:
        if not self.state.connected:
            return CommandResult(False, "not connected")
        if self.state.running:
            return CommandResult(True, "already running")
        goal = check_profit_goal(self.state.stats.profit, self.config.profit_goal)
        if not goal.approved:
            return CommandResult(False, f"{goal.reason}; reset stats to trade again")
        if self._strategy.is_ceiling_exceeded(self._strategy_state):
            self._strategy_state = self._strategy.reset()
            log.info("lifecycle.strategy_reset", strategy=self._strategy.strategy_id, reason="ceiling")
        self.state.running = True
        log.info("lifecycle.started", strategy=self._strategy.strategy_id)
        self._publish_state()
        return CommandResult(True, "started")

    def stop(self, reason: str = "stopped by user") -> CommandResult:
        if not self.state.running:
            return CommandResult(True, "already stopped")
        self.state.running = False
        log.info("lifecycle.stopped", reason=reason)
        self._publish_state()
        return CommandResult(True, "stopped")

    def reset_stats(self) -> CommandResult:
        self.state.stats = TradeStats()
        self.state.initial_balance = self.state.balance
        self._strategy_state = self._strategy.reset()
        self._history.clear()
        log.info("lifecycle.stats_reset", balance=str(self.state.balance))
        self._publish_state()
        return CommandResult(True, "stats reset")

    def switch_strategy(self, strategy: BaseStrategy, config: BotConfig) -> CommandResult:
        """Replace the strategy; its state starts fresh from reset()."""
        if self._active is not None:
            return CommandResult(False, "cannot switch strategy while a trade is outstanding")
        previous = self._strategy.strategy_id
        self._strategy = strategy
        self._strategy_state = strategy.reset()
        self._ctx.config = config
        log.info("lifecycle.strategy_switched", previous=previous, strategy=strategy.strategy_id)
        self._ctx.publish(BotEvent.CONFIG_CHANGED, config.summary())
        self._publish_state()
        return CommandResult(True, f"switched to {strategy.strategy_id}")

    def apply_config(self, config: BotConfig) -> CommandResult:
        """Apply a validated config to the current strategy; keep the old one on failure."""
        try:
            self._strategy.update_config(config)
        except ConfigError as exc:
            log.warning("lifecycle.config_rejected", error=str(exc))
            return CommandResult(False, str(exc))
        self._ctx.config = config
        self._strategy_state.current_stake = self._strategy.stake_for(
            min(self._strategy_state.loss_count, config.max_martingale),
        )
        log.info("lifecycle.config_applied", **config.summary())
        self._ctx.publish(BotEvent.CONFIG_CHANGED, config.summary())
        return CommandResult(True, "config updated")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_ack_for(self, trade: Trade | None, req_id: int | None, phase: LifecyclePhase) -> bool:
        if trade is None or trade.status is not TradeStatus.SENT or self._phase is not phase:
            return False
        return req_id is None or req_id == trade.id

    async def _submit(self, decision: Decision, digit: int, epoch: int) -> None:
        assert decision.entry_type is not None
        stake = self._strategy.get_current_stake(self._strategy_state)
        guard = check_stake_within_balance(stake, self.state.balance)
        if not guard.approved:
            self._halt(guard.reason, guard="balance")
            return

        trade = Trade(
            id=self._next_id,
            stake=stake,
            entry_digit=digit,
            entry_type=decision.entry_type,
            barrier=decision.barrier,
            payout=decision.payout if decision.payout is not None else self.config.payout,
            reason=decision.reason,
            sent_epoch=epoch,
        )
        self._next_id += 1
        self._active = trade
        self._phase = LifecyclePhase.PROPOSAL_REQUESTED
        self.state.pending_entry = True
        log_trade_event(
            "submit",
            trade.id,
            contract_type=trade.entry_type.value,
            barrier=trade.barrier,
            stake=str(stake),
            entry_digit=digit,
            reason=decision.reason,
        )
        self._ctx.publish(BotEvent.TRADE_PENDING, trade.summary())

        outcome = await self._transport.send(
            proposal_request(
                amount=stake,
                entry_type=trade.entry_type,
                currency=self.state.currency or self.config.currency,
                duration=self.config.duration,
                duration_unit=self.config.duration_unit,
                symbol=self.config.symbol,
                barrier=trade.barrier,
                req_id=trade.id,
            ),
        )
        if outcome is SendOutcome.FAILED:
            self._abandon("proposal request could not be sent")

    def _check_ack_timeout(self, epoch: int) -> None:
        trade = self._active
        timeout = self.config.ack_timeout_seconds
        if trade is None or trade.status is not TradeStatus.SENT or timeout <= 0:
            return
        if trade.sent_epoch is not None and epoch - trade.sent_epoch >= timeout:
            self._abandon(f"no acknowledgement within {timeout}s ({self._phase.value})")

    def _settle(self, trade: Trade, digit: int) -> None:
        self._phase = LifecyclePhase.SETTLED
        trade = trade.model_copy(update={"result_digit": digit})
        is_win = self._strategy.validate_trade_result(trade)
        profit = quantize_money(trade.stake * trade.payout) if is_win else -trade.stake
        trade = trade.model_copy(
            update={
                "status": TradeStatus.WON if is_win else TradeStatus.LOST,
                "profit": profit,
            },
        )

        stats = self.state.stats
        stats.total_trades += 1
        if is_win:
            stats.wins += 1
        else:
            stats.losses += 1
        stats.profit += profit
        if self._balance_synced:
            # The pushed balance already has the stake deducted.
            self.state.balance += (trade.stake + profit) if is_win else Decimal("0")
        else:
            self.state.balance += profit
        self._balance_synced = False

        self._active = None
        self._history.append(trade)
        self._phase = LifecyclePhase.NO_ORDER
        log_trade_event(
            "settle",
            trade.id,
            status=trade.status.value,
            result_digit=digit,
            profit=str(profit),
            total_profit=str(stats.profit),
        )
        self._ctx.publish(BotEvent.TRADE_SETTLED, trade.summary())

        if not self._strategy.on_trade_result(trade, self._strategy_state, is_win):
            stats.ceiling_hits += 1
            self._halt(
                f"martingale ceiling exceeded after {self._strategy_state.loss_count} losses",
                guard="martingale_ceiling",
            )

        goal = check_profit_goal(stats.profit, self.config.profit_goal)
        if not goal.approved:
            self._halt(goal.reason, guard="profit_goal")

        self._publish_state()

    def _abandon(self, reason: str) -> None:
        trade = self._active
        if trade is None:
            return
        trade = trade.model_copy(update={"abandon_reason": reason})
        self._active = None
        self._history.append(trade)
        self._phase = LifecyclePhase.NO_ORDER
        self.state.pending_entry = False
        log_trade_event("abandon", trade.id, reason=reason, proposal_id=trade.proposal_id)
        log.warning("lifecycle.trade_abandoned", trade_id=trade.id, reason=reason)
        self._ctx.publish(BotEvent.LOG_LINE, {"level": "warning", "message": reason})
        self._publish_state()

    def _apply_balance(self, balance: Decimal) -> None:
        self.state.balance = balance
        if self.state.initial_balance is None:
            self.state.initial_balance = balance

    def _halt(self, reason: str, guard: str) -> None:
        was_running = self.state.running
        self.state.running = False
        log.warning("lifecycle.guard_stop", guard=guard, reason=reason, was_running=was_running)
        self._ctx.publish(BotEvent.LOG_LINE, {"level": "warning", "message": reason})
        self._publish_state()

    def _publish_state(self) -> None:
        self._ctx.publish(BotEvent.STATE_CHANGED, self.state.snapshot())
