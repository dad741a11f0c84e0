"""Even/Odd counting strategy.

Waits for ``min_even`` consecutive even digits and then buys ODD, or for
``min_odd`` consecutive odd digits and then buys EVEN. During a loss
streak it repeats the last entry type on every tick until a win or the
martingale ceiling.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from digitbot.core.logging import get_logger
from digitbot.models.trade import Decision, EntryType, quantize_money
from digitbot.strategies.base import BaseStrategy, StrategyState
from digitbot.strategies.registry import register

log = get_logger(__name__)


class EvenOddParams(BaseModel):
    min_even: int = Field(default=6, ge=1, le=20)
    min_odd: int = Field(default=6, ge=1, le=20)

    model_config = {"frozen": True, "extra": "forbid"}


@dataclass
class EvenOddState(StrategyState):
    even_count: int = 0
    odd_count: int = 0
    last_entry_type: EntryType | None = None


@register("even_odd")
class EvenOddStrategy(BaseStrategy):
    """Bet against a run of same-parity digits."""

    NAME = "Even/Odd"
    PARAMS_MODEL = EvenOddParams

    def reset(self) -> EvenOddState:
        return EvenOddState(current_stake=quantize_money(self.base_stake))

    def process_signal(self, digit: int, state: StrategyState) -> Decision:
        assert isinstance(state, EvenOddState)
        params: EvenOddParams = self.params

        if state.loss_count > 0 and state.last_entry_type is not None:
            return Decision.enter(
                state.last_entry_type,
                reason=f"gale {state.loss_count}: repeat {state.last_entry_type.value}",
            )

        if digit % 2 == 0:
            state.even_count += 1
            state.odd_count = 0
            log.debug("even_odd.even", digit=digit, run=state.even_count, needed=params.min_even)
            if state.even_count >= params.min_even:
                state.even_count = 0
                state.last_entry_type = EntryType.ODD
                return Decision.enter(
                    EntryType.ODD,
                    reason=f"{params.min_even} consecutive even digits",
                )
        else:
            state.odd_count += 1
            state.even_count = 0
            log.debug("even_odd.odd", digit=digit, run=state.odd_count, needed=params.min_odd)
            if state.odd_count >= params.min_odd:
                state.odd_count = 0
                state.last_entry_type = EntryType.EVEN
                return Decision.enter(
                    EntryType.EVEN,
                    reason=f"{params.min_odd} consecutive odd digits",
                )

        return Decision.skip()

    def status(self, state: StrategyState) -> dict[str, Any]:
        assert isinstance(state, EvenOddState)
        info = super().status(state)
        info.update(
            even_count=state.even_count,
            odd_count=state.odd_count,
            next_entry=state.last_entry_type.value if state.last_entry_type else None,
        )
        return info
