"""Risk guards: balance, martingale ceiling and profit goal stops."""

from __future__ import annotations

from digitbot.risk.guards import (
    check_martingale_ceiling,
    check_profit_goal,
    check_stake_within_balance,
)

__all__ = [
    "check_martingale_ceiling",
    "check_profit_goal",
    "check_stake_within_balance",
]
