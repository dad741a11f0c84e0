"""Process-wide bot state and aggregate trade statistics."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


class TradeStats(BaseModel):
    """Aggregate results since start or the last stats reset."""

    profit: Decimal = Decimal("0")
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    ceiling_hits: int = 0

    @property
    def win_rate(self) -> Decimal:
        if self.total_trades == 0:
            return Decimal("0")
        return Decimal(self.wins) / Decimal(self.total_trades)


class BotState(BaseModel):
    """Shared bot flags and balances.

    Mutated only by the trade lifecycle manager; everything else reads it.
    ``pending_entry`` is true between order submission and purchase
    confirmation, and no second order may go out while it is set.
    """

    connected: bool = False
    running: bool = False
    pending_entry: bool = False
    balance: Decimal = Decimal("0")
    initial_balance: Decimal | None = None
    currency: str = "USD"
    stats: TradeStats = Field(default_factory=TradeStats)

    def snapshot(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data["stats"]["win_rate"] = str(self.stats.win_rate.quantize(Decimal("0.0001")))
        return data
