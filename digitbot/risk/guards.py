"""Stop conditions evaluated by the lifecycle manager and strategies.

Each guard is a pure check over the values it is given and returns a
RiskDecision; ``approved=False`` means trading must stop.
"""

from __future__ import annotations

from decimal import Decimal

from digitbot.core.logging import get_logger
from digitbot.interfaces import RiskDecision

log = get_logger(__name__)


def check_stake_within_balance(stake: Decimal, balance: Decimal) -> RiskDecision:
    """Reject a stake the account cannot cover."""
    if stake > balance:
        reason = f"insufficient balance: stake {stake} exceeds balance {balance}"
        log.warning("risk_rejected", guard="balance", stake=str(stake), balance=str(balance))
        return RiskDecision(approved=False, reason=reason)
    return RiskDecision(approved=True)


def check_martingale_ceiling(loss_count: int, max_martingale: int) -> RiskDecision:
    """Reject once the consecutive-loss counter passes the ceiling."""
    if loss_count > max_martingale:
        reason = f"martingale ceiling exceeded: {loss_count} losses > max {max_martingale}"
        log.warning(
            "risk_rejected",
            guard="martingale_ceiling",
            loss_count=loss_count,
            max_martingale=max_martingale,
        )
        return RiskDecision(approved=False, reason=reason)
    return RiskDecision(approved=True)


def check_profit_goal(profit: Decimal, profit_goal: Decimal) -> RiskDecision:
    """Reject once realised profit reaches a configured (positive) goal."""
    if profit_goal > 0 and profit >= profit_goal:
        reason = f"profit goal reached: {profit} >= {profit_goal}"
        log.info("risk_rejected", guard="profit_goal", profit=str(profit), goal=str(profit_goal))
        return RiskDecision(approved=False, reason=reason)
    return RiskDecision(approved=True)
