"""Base strategy abstract class. All strategies must inherit from this."""

from __future__ import annotations

import dataclasses
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ValidationError

from digitbot.config.loader import ConfigError
from digitbot.core.logging import get_logger
from digitbot.models.trade import contract_wins, quantize_money
from digitbot.risk.guards import check_martingale_ceiling

if TYPE_CHECKING:
    from digitbot.config.settings import BotConfig
    from digitbot.models.trade import Decision, Trade

log = get_logger(__name__)


@dataclass
class StrategyState:
    """Private per-strategy state. Subclasses add their own counters."""

    current_stake: Decimal
    loss_count: int = 0


class BaseStrategy(ABC):
    """Abstract base class for all digit strategies.

    Subclasses implement reset() and process_signal(). Martingale sizing,
    the ceiling check and settlement are shared; ``on_loss`` lets a
    strategy move its own sub-state after the loss counter is bumped.

    ``process_signal`` must depend only on the digit and the state it is
    given, so the same (digit, state) pair always yields the same decision.
    """

    NAME: ClassVar[str] = ""
    PARAMS_MODEL: ClassVar[type[BaseModel] | None] = None
    TRADING_MODES: ClassVar[dict[str, dict[str, Any]]] = {}
    RISK_MODES: ClassVar[dict[str, Decimal]] = {}

    def __init__(self, config: BotConfig, strategy_id: str | None = None) -> None:
        self.strategy_id = strategy_id or self.__class__.__name__
        self.update_config(config)

    def update_config(self, config: BotConfig) -> None:
        """Re-resolve params and multiplier from ``config``.

        Raises:
            ConfigError: On unknown mode names or invalid params.
        """
        params = self._resolve_params(config)
        multiplier = self._resolve_multiplier(config)
        self._config = config
        self._params = params
        self._multiplier = multiplier

    def _resolve_params(self, config: BotConfig) -> Any:
        raw = dict(config.params)
        if config.trading_mode is not None:
            if config.trading_mode not in self.TRADING_MODES:
                available = ", ".join(sorted(self.TRADING_MODES)) or "(none)"
                msg = (
                    f"Unknown trading mode '{config.trading_mode}' for "
                    f"{self.strategy_id}. Available: {available}"
                )
                raise ConfigError(msg)
            raw.update(self.TRADING_MODES[config.trading_mode])
        if self.PARAMS_MODEL is None:
            return None
        try:
            return self.PARAMS_MODEL.model_validate(raw)
        except ValidationError as exc:
            msg = f"Invalid params for {self.strategy_id}: {exc}"
            raise ConfigError(msg) from exc

    def _resolve_multiplier(self, config: BotConfig) -> Decimal:
        if config.risk_mode is None:
            return config.multiplier
        if config.risk_mode not in self.RISK_MODES:
            available = ", ".join(sorted(self.RISK_MODES)) or "(none)"
            msg = (
                f"Unknown risk mode '{config.risk_mode}' for "
                f"{self.strategy_id}. Available: {available}"
            )
            raise ConfigError(msg)
        return self.RISK_MODES[config.risk_mode]

    @property
    def config(self) -> BotConfig:
        return self._config

    @property
    def params(self) -> Any:
        return self._params

    @property
    def multiplier(self) -> Decimal:
        return self._multiplier

    @property
    def base_stake(self) -> Decimal:
        return self._config.base_stake

    @property
    def max_martingale(self) -> int:
        return self._config.max_martingale

    @abstractmethod
    def reset(self) -> StrategyState:
        """Initial state: no losses, base stake, initial sub-mode."""
        ...

    @abstractmethod
    def process_signal(self, digit: int, state: StrategyState) -> Decision:
        """Decide whether to trade on ``digit``, updating ``state`` in place.

        Args:
            digit: Trailing digit of the latest tick (0-9).
            state: This strategy's own state, from reset().

        Returns:
            A Decision; ``Decision.skip()`` when not trading.
        """
        ...

    def on_loss(self, trade: Trade, state: StrategyState) -> None:  # noqa: B027
        """Called after a loss that stays within the ceiling. Override for sub-modes."""

    def on_trade_result(self, trade: Trade, state: StrategyState, is_win: bool) -> bool:
        """Apply a settled result to ``state``.

        Returns:
            False once the loss counter exceeds ``max_martingale``; the
            state is left as is so the caller decides when to reset it.
        """
        if is_win:
            self._reinitialize(state)
            log.info("strategy.win_reset", strategy=self.strategy_id, trade_id=trade.id)
            return True

        state.loss_count += 1
        ceiling = check_martingale_ceiling(state.loss_count, self.max_martingale)
        if not ceiling.approved:
            log.warning(
                "strategy.ceiling_exceeded",
                strategy=self.strategy_id,
                trade_id=trade.id,
                reason=ceiling.reason,
            )
            return False

        state.current_stake = self.stake_for(state.loss_count)
        self.on_loss(trade, state)
        log.info(
            "strategy.gale",
            strategy=self.strategy_id,
            level=state.loss_count,
            max_martingale=self.max_martingale,
            next_stake=str(state.current_stake),
        )
        return True

    def _reinitialize(self, state: StrategyState) -> None:
        fresh = self.reset()
        for f in dataclasses.fields(fresh):
            setattr(state, f.name, getattr(fresh, f.name))

    def stake_for(self, loss_count: int) -> Decimal:
        """Stake after ``loss_count`` consecutive losses."""
        return quantize_money(self.base_stake * self.multiplier**loss_count)

    def get_current_stake(self, state: StrategyState) -> Decimal:
        return quantize_money(state.current_stake)

    def is_ceiling_exceeded(self, state: StrategyState) -> bool:
        return state.loss_count > self.max_martingale

    def validate_trade_result(self, trade: Trade) -> bool:
        """Win/loss for a trade whose result digit is known."""
        if trade.result_digit is None:
            return False
        return contract_wins(trade.entry_type, trade.barrier, trade.result_digit)

    def status(self, state: StrategyState) -> dict[str, Any]:
        """Dashboard view of the strategy and its state."""
        return {
            "strategy": self.strategy_id,
            "name": self.NAME or self.strategy_id,
            "martingale_level": state.loss_count,
            "max_martingale": self.max_martingale,
            "current_stake": str(self.get_current_stake(state)),
            "multiplier": str(self.multiplier),
            "trading_mode": self._config.trading_mode,
            "risk_mode": self._config.risk_mode,
        }
