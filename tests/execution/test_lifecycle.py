"""Tests for TradeLifecycleManager: proposal, purchase, settlement and guard stops."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from digitbot.config.settings import BotConfig
from digitbot.core.context import BotContext
from digitbot.execution import LifecyclePhase, TradeLifecycleManager
from digitbot.interfaces import BotEvent, SendOutcome
from digitbot.models.messages import (
    AuthorizeMessage,
    BalanceMessage,
    BuyMessage,
    ConnectionLost,
    ErrorMessage,
    ProposalMessage,
)
from digitbot.models.trade import EntryType, TradeStatus
from digitbot.strategies import registry
from tests.conftest import FakeTransport, RecordingSink

EPOCH = 1_700_000_000


def _manager(context: BotContext, transport: FakeTransport) -> TradeLifecycleManager:
    strategy = registry.create(context.config.strategy, context.config)
    manager = TradeLifecycleManager(context, transport, strategy)
    assert manager.start()
    return manager


async def _ack(manager: TradeLifecycleManager, purchase_time: int | None = None) -> None:
    """Confirm the active trade's proposal and purchase."""
    trade = manager.active_trade
    assert trade is not None
    await manager.on_proposal(
        ProposalMessage(id=f"p{trade.id}", ask_price=trade.stake, req_id=trade.id),
    )
    manager.on_buy(
        BuyMessage(
            contract_id=f"c{trade.id}",
            buy_price=trade.stake,
            purchase_time=purchase_time,
            req_id=trade.id,
        ),
    )


async def _enter_odd(manager: TradeLifecycleManager, epoch: int = EPOCH) -> None:
    """Two even digits trigger an ODD entry with min_even=2."""
    await manager.on_tick(2, epoch)
    await manager.on_tick(4, epoch + 1)


@pytest.fixture()
def manager(context: BotContext, transport: FakeTransport) -> TradeLifecycleManager:
    return _manager(context, transport)


class TestTradeFlow:
    @pytest.mark.asyncio()
    async def test_signal_sends_proposal(
        self, manager: TradeLifecycleManager, transport: FakeTransport,
    ) -> None:
        await _enter_odd(manager)
        trade = manager.active_trade
        assert trade is not None
        assert trade.id == 1
        assert trade.entry_type is EntryType.ODD
        assert trade.entry_digit == 4
        assert trade.stake == Decimal("1.00")
        assert trade.payout == Decimal("0.95")
        assert manager.phase is LifecyclePhase.PROPOSAL_REQUESTED
        assert manager.state.pending_entry is True

        (proposal,) = transport.of_kind("proposal")
        assert proposal["contract_type"] == "DIGITODD"
        assert proposal["req_id"] == 1
        assert "barrier" not in proposal

    @pytest.mark.asyncio()
    async def test_proposal_triggers_buy(
        self, manager: TradeLifecycleManager, transport: FakeTransport,
    ) -> None:
        await _enter_odd(manager)
        await manager.on_proposal(ProposalMessage(id="abc", ask_price=Decimal("1.00"), req_id=1))
        assert transport.of_kind("buy") == [{"buy": "abc", "price": 1.0, "req_id": 1}]
        assert manager.phase is LifecyclePhase.PURCHASE_REQUESTED
        assert manager.state.pending_entry is True

    @pytest.mark.asyncio()
    async def test_buy_opens_trade(self, manager: TradeLifecycleManager) -> None:
        await _enter_odd(manager)
        await _ack(manager)
        trade = manager.active_trade
        assert trade is not None
        assert trade.status is TradeStatus.OPEN
        assert trade.contract_id == "c1"
        assert trade.expiry_ticks == 1
        assert manager.state.pending_entry is False
        assert manager.phase is LifecyclePhase.OPEN

    @pytest.mark.asyncio()
    async def test_win_settles_with_profit(
        self, manager: TradeLifecycleManager, sink: RecordingSink,
    ) -> None:
        await _enter_odd(manager)
        await _ack(manager)
        await manager.on_tick(7, EPOCH + 2)

        assert manager.active_trade is None
        (trade,) = manager.history
        assert trade.status is TradeStatus.WON
        assert trade.result_digit == 7
        assert trade.profit == Decimal("0.95")
        assert manager.state.balance == Decimal("100.95")
        assert manager.state.stats.wins == 1
        assert manager.state.stats.total_trades == 1
        assert manager.phase is LifecyclePhase.NO_ORDER
        assert len(sink.of_kind(BotEvent.TRADE_SETTLED)) == 1

    @pytest.mark.asyncio()
    async def test_loss_gales_on_same_tick(
        self, manager: TradeLifecycleManager, transport: FakeTransport,
    ) -> None:
        await _enter_odd(manager)
        await _ack(manager)
        await manager.on_tick(8, EPOCH + 2)

        (lost,) = manager.history
        assert lost.status is TradeStatus.LOST
        assert lost.profit == Decimal("-1.00")
        assert manager.state.balance == Decimal("99.00")
        assert manager.strategy_state.loss_count == 1

        gale = manager.active_trade
        assert gale is not None
        assert gale.id == 2
        assert gale.entry_type is EntryType.ODD
        assert gale.stake == Decimal("2.00")
        assert len(transport.of_kind("proposal")) == 2

    @pytest.mark.asyncio()
    async def test_not_running_does_not_trade(
        self, manager: TradeLifecycleManager, transport: FakeTransport,
    ) -> None:
        manager.stop()
        await _enter_odd(manager)
        assert manager.active_trade is None
        assert transport.sent == []

    @pytest.mark.asyncio()
    async def test_proposal_send_failure_abandons(
        self, context: BotContext,
    ) -> None:
        transport = FakeTransport(outcome=SendOutcome.FAILED)
        manager = _manager(context, transport)
        await _enter_odd(manager)
        assert manager.active_trade is None
        assert manager.state.pending_entry is False
        (trade,) = manager.history
        assert trade.abandon_reason == "proposal request could not be sent"


class TestSettlementTiming:
    @pytest.mark.asyncio()
    async def test_tick_duration(self, context: BotContext, transport: FakeTransport) -> None:
        context.config = context.config.model_copy(update={"duration": 3})
        manager = _manager(context, transport)
        await _enter_odd(manager)
        # Ticks before confirmation do not count.
        await manager.on_tick(5, EPOCH + 2)
        await _ack(manager)
        await manager.on_tick(1, EPOCH + 3)
        await manager.on_tick(1, EPOCH + 4)
        assert manager.active_trade is not None
        await manager.on_tick(3, EPOCH + 5)
        (trade,) = manager.history
        assert trade.result_digit == 3
        assert trade.ticks_observed == 3

    @pytest.mark.asyncio()
    async def test_second_duration(self, context: BotContext, transport: FakeTransport) -> None:
        context.config = context.config.model_copy(update={"duration": 5, "duration_unit": "s"})
        manager = _manager(context, transport)
        await _enter_odd(manager)
        await _ack(manager, purchase_time=EPOCH + 1)
        assert manager.active_trade is not None
        assert manager.active_trade.expiry_epoch == EPOCH + 6

        await manager.on_tick(1, EPOCH + 3)
        await manager.on_tick(1, EPOCH + 5)
        assert manager.history == []
        await manager.on_tick(9, EPOCH + 6)
        (trade,) = manager.history
        assert trade.result_digit == 9

    @pytest.mark.asyncio()
    async def test_minute_duration_without_purchase_time(
        self, context: BotContext, transport: FakeTransport,
    ) -> None:
        context.config = context.config.model_copy(update={"duration": 1, "duration_unit": "m"})
        manager = _manager(context, transport)
        await _enter_odd(manager)
        await _ack(manager)
        assert manager.active_trade is not None
        assert manager.active_trade.expiry_epoch == EPOCH + 1 + 60


class TestAcknowledgements:
    @pytest.mark.asyncio()
    async def test_timeout_abandons_trade(
        self, manager: TradeLifecycleManager, sink: RecordingSink,
    ) -> None:
        await _enter_odd(manager)
        await manager.on_tick(1, EPOCH + 1 + 30)

        assert manager.active_trade is None
        assert manager.state.pending_entry is False
        (trade,) = manager.history
        assert trade.status is TradeStatus.SENT
        assert "no acknowledgement within 30s" in trade.abandon_reason
        assert manager.state.stats.total_trades == 0
        assert any("no acknowledgement" in p["message"] for p in sink.of_kind(BotEvent.LOG_LINE))

    @pytest.mark.asyncio()
    async def test_no_timeout_before_deadline(self, manager: TradeLifecycleManager) -> None:
        await _enter_odd(manager)
        await manager.on_tick(1, EPOCH + 1 + 29)
        assert manager.active_trade is not None

    @pytest.mark.asyncio()
    async def test_zero_timeout_waits_forever(
        self, context: BotContext, transport: FakeTransport,
    ) -> None:
        context.config = context.config.model_copy(update={"ack_timeout_seconds": 0})
        manager = _manager(context, transport)
        await _enter_odd(manager)
        await manager.on_tick(1, EPOCH + 10_000)
        assert manager.active_trade is not None

    @pytest.mark.asyncio()
    async def test_late_acks_after_abandon_are_ignored(
        self, manager: TradeLifecycleManager, transport: FakeTransport,
    ) -> None:
        await _enter_odd(manager)
        await manager.on_tick(1, EPOCH + 1 + 30)

        await manager.on_proposal(ProposalMessage(id="late", ask_price=Decimal("1"), req_id=1))
        manager.on_buy(BuyMessage(contract_id="late", buy_price=Decimal("1"), req_id=1))
        assert transport.of_kind("buy") == []
        assert manager.active_trade is None

    @pytest.mark.asyncio()
    async def test_late_purchase_reports_untracked_contract(
        self, manager: TradeLifecycleManager, sink: RecordingSink,
    ) -> None:
        await _enter_odd(manager)
        await manager.on_tick(1, EPOCH + 1 + 30)

        manager.on_buy(BuyMessage(contract_id="c77", buy_price=Decimal("1"), req_id=1))
        errors = [p for p in sink.of_kind(BotEvent.LOG_LINE) if p["level"] == "error"]
        assert errors == [
            {"level": "error", "message": "untracked open contract c77", "contract_id": "c77"},
        ]

    @pytest.mark.asyncio()
    async def test_proposal_for_other_trade_ignored(
        self, manager: TradeLifecycleManager, transport: FakeTransport,
    ) -> None:
        await _enter_odd(manager)
        await manager.on_proposal(ProposalMessage(id="x", ask_price=Decimal("1"), req_id=99))
        assert transport.of_kind("buy") == []
        assert manager.phase is LifecyclePhase.PROPOSAL_REQUESTED

    @pytest.mark.asyncio()
    async def test_buy_before_proposal_ignored(self, manager: TradeLifecycleManager) -> None:
        await _enter_odd(manager)
        manager.on_buy(BuyMessage(contract_id="c", buy_price=Decimal("1"), req_id=1))
        assert manager.active_trade is not None
        assert manager.active_trade.status is TradeStatus.SENT


class TestVenueErrors:
    @pytest.mark.asyncio()
    async def test_proposal_error_abandons(
        self, manager: TradeLifecycleManager, sink: RecordingSink,
    ) -> None:
        await _enter_odd(manager)
        manager.on_error(ErrorMessage(message="Stake too low", msg_type="proposal", req_id=1))
        assert manager.active_trade is None
        assert manager.state.pending_entry is False
        assert manager.history[0].abandon_reason == "venue error: Stake too low"
        assert {"level": "error", "message": "Stake too low"} in sink.of_kind(BotEvent.LOG_LINE)

    @pytest.mark.asyncio()
    async def test_unrelated_error_keeps_trade(
        self, manager: TradeLifecycleManager, transport: FakeTransport,
    ) -> None:
        await _enter_odd(manager)
        manager.on_error(ErrorMessage(message="Rate limit", msg_type="ticks"))
        assert manager.active_trade is not None
        assert manager.state.pending_entry is False
        # The in-flight trade still blocks a second order.
        await manager.on_tick(6, EPOCH + 2)
        await manager.on_tick(8, EPOCH + 3)
        assert len(transport.of_kind("proposal")) == 1
        await manager.on_proposal(ProposalMessage(id="p1", ask_price=Decimal("1"), req_id=1))
        assert len(transport.of_kind("buy")) == 1

    @pytest.mark.asyncio()
    async def test_error_for_open_trade_ignored(self, manager: TradeLifecycleManager) -> None:
        await _enter_odd(manager)
        await _ack(manager)
        manager.on_error(ErrorMessage(message="whatever", msg_type="buy", req_id=1))
        assert manager.active_trade is not None
        assert manager.active_trade.status is TradeStatus.OPEN


class TestGuards:
    @pytest.mark.asyncio()
    async def test_insufficient_balance_stops_before_proposal(
        self, manager: TradeLifecycleManager, transport: FakeTransport, sink: RecordingSink,
    ) -> None:
        manager.state.balance = Decimal("0.50")
        await _enter_odd(manager)
        assert transport.of_kind("proposal") == []
        assert manager.active_trade is None
        assert manager.state.running is False
        assert any("insufficient balance" in p["message"] for p in sink.of_kind(BotEvent.LOG_LINE))

    @pytest.mark.asyncio()
    async def test_profit_goal_stops_on_crossing_settlement(
        self, context: BotContext, transport: FakeTransport,
    ) -> None:
        context.config = context.config.model_copy(
            update={"profit_goal": Decimal("10"), "payout": Decimal("0.70")},
        )
        context.state.stats.profit = Decimal("9.50")
        manager = _manager(context, transport)
        await _enter_odd(manager)
        await _ack(manager)
        await manager.on_tick(7, EPOCH + 2)

        assert manager.state.stats.profit == Decimal("10.20")
        assert manager.state.running is False
        result = manager.start()
        assert result.ok is False
        assert "reset stats" in result.message

    @pytest.mark.asyncio()
    async def test_ceiling_stops_and_start_resets(
        self, manager: TradeLifecycleManager, transport: FakeTransport,
    ) -> None:
        await _enter_odd(manager)
        for n in range(4):
            await _ack(manager)
            await manager.on_tick(8, EPOCH + 2 + n)

        assert manager.state.running is False
        assert manager.state.stats.losses == 4
        assert manager.state.stats.ceiling_hits == 1
        assert manager.strategy_state.loss_count == 4
        assert manager.active_trade is None
        assert [t.stake for t in manager.history] == [
            Decimal("1.00"), Decimal("2.00"), Decimal("4.00"), Decimal("8.00"),
        ]

        assert manager.start().ok is True
        assert manager.strategy_state.loss_count == 0
        assert manager.strategy_state.current_stake == Decimal("1.00")


class TestSingleOutstandingTrade:
    @given(
        ticks=st.lists(
            st.tuples(st.integers(min_value=0, max_value=9), st.booleans()),
            max_size=40,
        ),
    )
    @settings(max_examples=50)
    def test_at_most_one_outstanding(self, ticks: list[tuple[int, bool]]) -> None:
        async def drive() -> None:
            config = BotConfig(
                base_stake=Decimal("1.00"),
                multiplier=Decimal("2"),
                max_martingale=3,
                params={"min_even": 2, "min_odd": 2},
            )
            context = BotContext(config=config, events=RecordingSink())
            context.state.connected = True
            context.state.balance = Decimal("1000")
            transport = FakeTransport()
            manager = _manager(context, transport)

            for n, (digit, ack) in enumerate(ticks):
                await manager.on_tick(digit, EPOCH + n)
                active = manager.active_trade
                if ack and active is not None and active.status is TradeStatus.SENT:
                    await _ack(manager)
                assert manager.outstanding_count <= 1
                in_flight = 1 if manager.active_trade is not None else 0
                assert len(transport.of_kind("proposal")) == len(manager.history) + in_flight

        asyncio.run(drive())


class TestCommands:
    def test_start_requires_connection(self, context: BotContext, transport: FakeTransport) -> None:
        context.state.connected = False
        strategy = registry.create("even_odd", context.config)
        manager = TradeLifecycleManager(context, transport, strategy)
        result = manager.start()
        assert result.ok is False
        assert result.message == "not connected"

    def test_start_twice(self, manager: TradeLifecycleManager) -> None:
        assert manager.start().message == "already running"

    def test_stop(self, manager: TradeLifecycleManager) -> None:
        assert manager.stop().ok is True
        assert manager.state.running is False
        assert manager.stop().message == "already stopped"

    def test_reset_stats(self, manager: TradeLifecycleManager) -> None:
        manager.state.stats.profit = Decimal("5")
        manager.state.balance = Decimal("105")
        assert manager.reset_stats().ok is True
        assert manager.state.stats.profit == Decimal("0")
        assert manager.state.initial_balance == Decimal("105")

    @pytest.mark.asyncio()
    async def test_switch_refused_while_outstanding(
        self, manager: TradeLifecycleManager,
    ) -> None:
        await _enter_odd(manager)
        config = BotConfig(strategy="zeus")
        result = manager.switch_strategy(registry.create("zeus", config), config)
        assert result.ok is False
        assert manager.strategy.strategy_id == "even_odd"

    def test_switch_strategy(self, manager: TradeLifecycleManager, sink: RecordingSink) -> None:
        config = BotConfig(strategy="zeus")
        result = manager.switch_strategy(registry.create("zeus", config), config)
        assert result.ok is True
        assert manager.strategy.strategy_id == "zeus"
        assert manager.config is config
        assert sink.of_kind(BotEvent.CONFIG_CHANGED)[-1]["strategy"] == "zeus"

    def test_apply_config_rejected_keeps_previous(self, manager: TradeLifecycleManager) -> None:
        previous = manager.config
        result = manager.apply_config(previous.merged({"params": {"min_even": 0}}))
        assert result.ok is False
        assert manager.config is previous
        assert manager.strategy.params.min_even == 2

    def test_apply_config_recomputes_stake(self, manager: TradeLifecycleManager) -> None:
        manager.strategy_state.loss_count = 2
        result = manager.apply_config(manager.config.merged({"multiplier": Decimal("3")}))
        assert result.ok is True
        assert manager.strategy_state.current_stake == Decimal("9.00")

    def test_explicit_multiplier_replaces_risk_mode(
        self, context: BotContext, transport: FakeTransport,
    ) -> None:
        context.config = BotConfig(strategy="gladiator", risk_mode="conservative")
        manager = _manager(context, transport)
        assert manager.strategy.multiplier == Decimal("2.2")

        result = manager.apply_config(manager.config.merged({"multiplier": Decimal("3.0")}))
        assert result.ok is True
        assert manager.strategy.multiplier == Decimal("3.0")
        assert manager.config.risk_mode is None


class TestAccountEvents:
    def test_authorized_sets_balance(self, context: BotContext, transport: FakeTransport) -> None:
        context.state.initial_balance = None
        manager = _manager(context, transport)
        manager.on_authorized(AuthorizeMessage(balance=Decimal("250.00"), currency="EUR"))
        assert manager.state.balance == Decimal("250.00")
        assert manager.state.initial_balance == Decimal("250.00")
        assert manager.state.currency == "EUR"

    def test_balance_update_keeps_initial(self, manager: TradeLifecycleManager) -> None:
        manager.on_balance(BalanceMessage(balance=Decimal("80.00")))
        assert manager.state.balance == Decimal("80.00")
        assert manager.state.initial_balance == Decimal("100.00")

    @pytest.mark.asyncio()
    async def test_pushed_balance_not_debited_twice_on_loss(
        self, context: BotContext, transport: FakeTransport,
    ) -> None:
        context.config = context.config.merged({"base_stake": Decimal("5.00")})
        context.state.balance = Decimal("20.00")
        manager = _manager(context, transport)
        await _enter_odd(manager)
        await _ack(manager)
        manager.on_balance(BalanceMessage(balance=Decimal("15.00")))

        await manager.on_tick(8, EPOCH + 2)
        assert manager.state.balance == Decimal("15.00")
        assert manager.state.stats.profit == Decimal("-5.00")
        assert manager.state.running is True
        gale = manager.active_trade
        assert gale is not None
        assert gale.stake == Decimal("10.00")

    @pytest.mark.asyncio()
    async def test_pushed_balance_credited_on_win(self, manager: TradeLifecycleManager) -> None:
        await _enter_odd(manager)
        await _ack(manager)
        manager.on_balance(BalanceMessage(balance=Decimal("99.00")))

        await manager.on_tick(7, EPOCH + 2)
        assert manager.state.balance == Decimal("100.95")

    @pytest.mark.asyncio()
    async def test_balance_push_before_purchase_uses_net_result(
        self, manager: TradeLifecycleManager,
    ) -> None:
        manager.on_balance(BalanceMessage(balance=Decimal("100.00")))
        await _enter_odd(manager)
        await _ack(manager)

        await manager.on_tick(8, EPOCH + 2)
        assert manager.state.balance == Decimal("99.00")

    def test_connection_lost_with_retry_keeps_running(self, manager: TradeLifecycleManager) -> None:
        manager.on_connection_lost(ConnectionLost(will_retry=True, attempts=1))
        assert manager.state.connected is False
        assert manager.state.running is True

    def test_connection_exhausted_stops(self, manager: TradeLifecycleManager) -> None:
        manager.on_connection_lost(ConnectionLost(will_retry=False, attempts=5))
        assert manager.state.running is False

    def test_snapshot(self, manager: TradeLifecycleManager) -> None:
        snap = manager.snapshot()
        assert snap["phase"] == "no_order"
        assert snap["active_trade"] is None
        assert snap["strategy"]["strategy"] == "even_odd"
        assert snap["state"]["running"] is True
