"""Mode-switch strategies: Gladiator, Winner and Zeus.

All three trade a fixed contract on every tick in NORMAL mode. The first
loss moves them to WAITING_FOR_SEQUENCE, where no trades are placed
until ``loss_wait_count`` consecutive digits satisfy the wait condition.
Reaching the threshold enters GALE_ACTIVE and trades the gale contract
on that same tick, then on every tick until a win (back to NORMAL) or
the martingale ceiling. A ``loss_wait_count`` of 0 skips the wait.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, Field

from digitbot.core.logging import get_logger
from digitbot.models.trade import Decision, EntryType, contract_wins, quantize_money
from digitbot.strategies.base import BaseStrategy, StrategyState
from digitbot.strategies.registry import register

if TYPE_CHECKING:
    from digitbot.models.trade import Trade

log = get_logger(__name__)


class Mode(str, Enum):
    NORMAL = "normal"
    WAITING_FOR_SEQUENCE = "waiting_for_sequence"
    GALE_ACTIVE = "gale_active"


@dataclass(frozen=True)
class Contract:
    entry_type: EntryType
    barrier: int
    payout: Decimal

    def label(self) -> str:
        return f"{self.entry_type.value} {self.barrier}"


class ModeSwitchParams(BaseModel):
    loss_wait_count: int = Field(default=2, ge=0, le=20)

    model_config = {"frozen": True, "extra": "forbid"}


@dataclass
class ModeSwitchState(StrategyState):
    mode: Mode = Mode.NORMAL
    sequence_count: int = 0


class ModeSwitchStrategy(BaseStrategy):
    """NORMAL / WAITING_FOR_SEQUENCE / GALE_ACTIVE state machine.

    Subclasses set the two contracts and the wait condition, expressed as
    the contract a qualifying digit would win (``(UNDER, 5)`` counts
    digits below 5).
    """

    PARAMS_MODEL = ModeSwitchParams
    NORMAL_CONTRACT: ClassVar[Contract]
    GALE_CONTRACT: ClassVar[Contract]
    WAIT_CONDITION: ClassVar[tuple[EntryType, int]]

    def reset(self) -> ModeSwitchState:
        return ModeSwitchState(current_stake=quantize_money(self.base_stake))

    @property
    def loss_wait_count(self) -> int:
        return self.params.loss_wait_count

    def _enter(self, contract: Contract, reason: str) -> Decision:
        return Decision.enter(
            contract.entry_type,
            barrier=contract.barrier,
            payout=contract.payout,
            reason=reason,
        )

    def process_signal(self, digit: int, state: StrategyState) -> Decision:
        assert isinstance(state, ModeSwitchState)

        if state.mode is Mode.NORMAL:
            return self._enter(self.NORMAL_CONTRACT, f"{self.NAME}: {self.NORMAL_CONTRACT.label()}")

        if state.mode is Mode.GALE_ACTIVE:
            return self._enter(
                self.GALE_CONTRACT,
                f"{self.NAME}: gale {state.loss_count} {self.GALE_CONTRACT.label()}",
            )

        wait_type, wait_barrier = self.WAIT_CONDITION
        if contract_wins(wait_type, wait_barrier, digit):
            state.sequence_count += 1
            log.debug(
                "mode_switch.waiting",
                strategy=self.strategy_id,
                digit=digit,
                run=state.sequence_count,
                needed=self.loss_wait_count,
            )
            if state.sequence_count >= self.loss_wait_count:
                state.mode = Mode.GALE_ACTIVE
                state.sequence_count = 0
                log.info("mode_switch.gale_active", strategy=self.strategy_id, level=state.loss_count)
                return self._enter(
                    self.GALE_CONTRACT,
                    f"{self.NAME}: gale {state.loss_count} {self.GALE_CONTRACT.label()} after sequence",
                )
        elif state.sequence_count > 0:
            log.debug("mode_switch.sequence_broken", strategy=self.strategy_id, digit=digit)
            state.sequence_count = 0

        return Decision.skip()

    def on_loss(self, trade: Trade, state: StrategyState) -> None:
        assert isinstance(state, ModeSwitchState)
        if state.mode is not Mode.NORMAL:
            return
        state.sequence_count = 0
        if self.loss_wait_count == 0:
            state.mode = Mode.GALE_ACTIVE
        else:
            state.mode = Mode.WAITING_FOR_SEQUENCE
            wait_type, wait_barrier = self.WAIT_CONDITION
            log.info(
                "mode_switch.waiting_for_sequence",
                strategy=self.strategy_id,
                wait_for=f"{wait_type.value} {wait_barrier}",
                needed=self.loss_wait_count,
            )

    def status(self, state: StrategyState) -> dict[str, Any]:
        assert isinstance(state, ModeSwitchState)
        info = super().status(state)
        info.update(
            mode=state.mode.value,
            sequence_count=state.sequence_count,
            loss_wait_count=self.loss_wait_count,
        )
        return info


@register("gladiator")
class GladiatorStrategy(ModeSwitchStrategy):
    NAME = "Gladiator"
    NORMAL_CONTRACT = Contract(EntryType.OVER, 2, Decimal("0.35"))
    GALE_CONTRACT = Contract(EntryType.OVER, 4, Decimal("0.85"))
    WAIT_CONDITION = (EntryType.UNDER, 5)
    TRADING_MODES = {
        "fast": {"loss_wait_count": 2},
        "balanced": {"loss_wait_count": 4},
        "precise": {"loss_wait_count": 6},
    }
    RISK_MODES = {
        "conservative": Decimal("2.2"),
        "optimized": Decimal("2.4"),
        "aggressive": Decimal("2.6"),
    }


@register("winner")
class WinnerStrategy(ModeSwitchStrategy):
    NAME = "Winner"
    NORMAL_CONTRACT = Contract(EntryType.OVER, 2, Decimal("0.35"))
    GALE_CONTRACT = Contract(EntryType.UNDER, 7, Decimal("0.35"))
    WAIT_CONDITION = (EntryType.OVER, 6)
    TRADING_MODES = {
        "fast": {"loss_wait_count": 2},
        "balanced": {"loss_wait_count": 3},
        "precise": {"loss_wait_count": 4},
    }
    RISK_MODES = {
        "conservative": Decimal("3.5"),
        "optimized": Decimal("4.0"),
        "aggressive": Decimal("4.2"),
    }


@register("zeus")
class ZeusStrategy(ModeSwitchStrategy):
    NAME = "Zeus"
    NORMAL_CONTRACT = Contract(EntryType.OVER, 3, Decimal("0.56"))
    GALE_CONTRACT = Contract(EntryType.OVER, 3, Decimal("0.56"))
    WAIT_CONDITION = (EntryType.UNDER, 4)
    TRADING_MODES = {
        "fast": {"loss_wait_count": 2},
        "balanced": {"loss_wait_count": 5},
        "precise": {"loss_wait_count": 7},
    }
    RISK_MODES = {
        "conservative": Decimal("2.8"),
        "optimized": Decimal("3.0"),
        "aggressive": Decimal("3.2"),
    }
