"""Over/Under counting strategy with a sequence-gated martingale.

Counts consecutive digits satisfying ``wait_for reference_digit`` and,
after ``min_consecutive`` of them, buys the opposite contract at
``target_digit``. After a loss it waits for ``min_martingale_sequence``
digits satisfying ``martingale_wait_for martingale_reference_digit``
(skipped when that is 0), then buys the martingale contract at
``martingale_target_digit`` on every tick until a win or the ceiling.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field, model_validator

from digitbot.core.logging import get_logger
from digitbot.models.trade import Decision, EntryType, quantize_money
from digitbot.strategies.base import BaseStrategy, StrategyState
from digitbot.strategies.registry import register

if TYPE_CHECKING:
    from digitbot.models.trade import Trade

log = get_logger(__name__)

Direction = Literal["OVER", "UNDER"]


def _matches(direction: Direction, digit: int, reference: int) -> bool:
    if direction == "OVER":
        return digit > reference
    return digit < reference


def _opposite(direction: Direction) -> EntryType:
    """Contract bought after a run of ``direction`` digits."""
    return EntryType.UNDER if direction == "OVER" else EntryType.OVER


def _check_barrier(entry_type: EntryType, barrier: int, field: str) -> None:
    # DIGITOVER 9 and DIGITUNDER 0 can never win.
    if entry_type is EntryType.OVER and barrier > 8:
        msg = f"{field}={barrier} makes an unwinnable DIGITOVER contract (max 8)"
        raise ValueError(msg)
    if entry_type is EntryType.UNDER and barrier < 1:
        msg = f"{field}={barrier} makes an unwinnable DIGITUNDER contract (min 1)"
        raise ValueError(msg)


class OverUnderParams(BaseModel):
    wait_for: Direction = "UNDER"
    reference_digit: int = Field(default=3, ge=0, le=9)
    target_digit: int = Field(default=2, ge=0, le=9)
    min_consecutive: int = Field(default=1, ge=1, le=20)
    martingale_target_digit: int = Field(default=4, ge=0, le=9)
    martingale_wait_for: Direction = "UNDER"
    martingale_reference_digit: int = Field(default=5, ge=0, le=9)
    min_martingale_sequence: int = Field(default=3, ge=0, le=20)

    model_config = {"frozen": True, "extra": "forbid"}

    @model_validator(mode="after")
    def barriers_winnable(self) -> OverUnderParams:
        _check_barrier(_opposite(self.wait_for), self.target_digit, "target_digit")
        _check_barrier(
            _opposite(self.martingale_wait_for),
            self.martingale_target_digit,
            "martingale_target_digit",
        )
        return self

    @property
    def entry_type(self) -> EntryType:
        return _opposite(self.wait_for)

    @property
    def martingale_entry_type(self) -> EntryType:
        return _opposite(self.martingale_wait_for)


@dataclass
class OverUnderState(StrategyState):
    consecutive_count: int = 0
    waiting_for_sequence: bool = False
    sequence_count: int = 0
    martingale_active: bool = False
    entry_type: EntryType | None = None
    barrier: int | None = None


@register("over_under")
class OverUnderStrategy(BaseStrategy):
    """Bet against a run of high or low digits."""

    NAME = "Over/Under"
    PARAMS_MODEL = OverUnderParams

    def reset(self) -> OverUnderState:
        return OverUnderState(current_stake=quantize_money(self.base_stake))

    def process_signal(self, digit: int, state: StrategyState) -> Decision:
        assert isinstance(state, OverUnderState)
        params: OverUnderParams = self.params

        if state.martingale_active and state.loss_count > 0:
            assert state.entry_type is not None
            return Decision.enter(
                state.entry_type,
                barrier=state.barrier,
                reason=f"gale {state.loss_count}: {state.entry_type.value} {state.barrier}",
            )

        if state.waiting_for_sequence:
            return self._process_martingale_sequence(digit, state, params)

        condition = f"{params.wait_for} {params.reference_digit}"
        if _matches(params.wait_for, digit, params.reference_digit):
            state.consecutive_count += 1
            log.debug(
                "over_under.run",
                condition=condition,
                digit=digit,
                run=state.consecutive_count,
                needed=params.min_consecutive,
            )
            if state.consecutive_count >= params.min_consecutive:
                state.consecutive_count = 0
                state.entry_type = params.entry_type
                state.barrier = params.target_digit
                return Decision.enter(
                    params.entry_type,
                    barrier=params.target_digit,
                    reason=f"{params.min_consecutive} consecutive {condition} digits",
                )
        elif state.consecutive_count > 0:
            log.debug("over_under.run_broken", condition=condition, digit=digit)
            state.consecutive_count = 0

        return Decision.skip()

    def _process_martingale_sequence(
        self,
        digit: int,
        state: OverUnderState,
        params: OverUnderParams,
    ) -> Decision:
        condition = f"{params.martingale_wait_for} {params.martingale_reference_digit}"
        if _matches(params.martingale_wait_for, digit, params.martingale_reference_digit):
            state.sequence_count += 1
            log.debug(
                "over_under.gale_run",
                condition=condition,
                digit=digit,
                run=state.sequence_count,
                needed=params.min_martingale_sequence,
            )
            if state.sequence_count >= params.min_martingale_sequence:
                state.waiting_for_sequence = False
                state.sequence_count = 0
                state.martingale_active = True
                state.entry_type = params.martingale_entry_type
                state.barrier = params.martingale_target_digit
                return Decision.enter(
                    state.entry_type,
                    barrier=state.barrier,
                    reason=f"gale {state.loss_count}: {condition} sequence reached",
                )
        elif state.sequence_count > 0:
            log.debug("over_under.gale_run_broken", condition=condition, digit=digit)
            state.sequence_count = 0

        return Decision.skip()

    def on_loss(self, trade: Trade, state: StrategyState) -> None:
        assert isinstance(state, OverUnderState)
        params: OverUnderParams = self.params
        state.entry_type = params.martingale_entry_type
        state.barrier = params.martingale_target_digit
        if params.min_martingale_sequence > 0 and not state.martingale_active:
            state.waiting_for_sequence = True
            state.sequence_count = 0
        else:
            state.martingale_active = True

    def status(self, state: StrategyState) -> dict[str, Any]:
        assert isinstance(state, OverUnderState)
        info = super().status(state)
        info.update(
            consecutive_count=state.consecutive_count,
            waiting_for_sequence=state.waiting_for_sequence,
            sequence_count=state.sequence_count,
            martingale_active=state.martingale_active,
            next_entry=(
                f"{state.entry_type.value} {state.barrier}" if state.entry_type else None
            ),
        )
        return info
