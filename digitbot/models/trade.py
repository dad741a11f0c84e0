"""Digit contract, decision and trade models."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from pydantic import BaseModel, model_validator

CENT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    """Round an amount to the minimum currency unit."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class EntryType(str, Enum):
    """Digit contract families; values are the venue contract types."""

    OVER = "DIGITOVER"
    UNDER = "DIGITUNDER"
    ODD = "DIGITODD"
    EVEN = "DIGITEVEN"

    @property
    def needs_barrier(self) -> bool:
        return self in (EntryType.OVER, EntryType.UNDER)


class TradeStatus(str, Enum):
    SENT = "sent"
    OPEN = "open"
    WON = "won"
    LOST = "lost"

    @property
    def is_outstanding(self) -> bool:
        return self in (TradeStatus.SENT, TradeStatus.OPEN)


def contract_wins(entry_type: EntryType, barrier: int | None, digit: int) -> bool:
    """Settlement predicate for a digit contract.

    OVER wins iff digit > barrier, UNDER iff digit < barrier,
    ODD iff digit is odd, EVEN iff digit is even.
    """
    if entry_type is EntryType.OVER:
        return barrier is not None and digit > barrier
    if entry_type is EntryType.UNDER:
        return barrier is not None and digit < barrier
    if entry_type is EntryType.ODD:
        return digit % 2 == 1
    return digit % 2 == 0


class Decision(BaseModel):
    """Outcome of a strategy looking at one digit."""

    should_trade: bool = False
    entry_type: EntryType | None = None
    barrier: int | None = None
    payout: Decimal | None = None
    reason: str = ""

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def trade_has_contract(self) -> Decision:
        if self.should_trade:
            if self.entry_type is None:
                msg = "a trade decision needs an entry_type"
                raise ValueError(msg)
            if self.entry_type.needs_barrier and self.barrier is None:
                msg = f"{self.entry_type.value} needs a barrier"
                raise ValueError(msg)
        return self

    @classmethod
    def skip(cls, reason: str = "") -> Decision:
        return cls(should_trade=False, reason=reason)

    @classmethod
    def enter(
        cls,
        entry_type: EntryType,
        barrier: int | None = None,
        payout: Decimal | None = None,
        reason: str = "",
    ) -> Decision:
        return cls(
            should_trade=True,
            entry_type=entry_type,
            barrier=barrier,
            payout=payout,
            reason=reason,
        )


class Trade(BaseModel):
    """One submitted order, from proposal request to settlement."""

    id: int
    stake: Decimal
    entry_digit: int
    entry_type: EntryType
    barrier: int | None = None
    payout: Decimal
    status: TradeStatus = TradeStatus.SENT
    reason: str = ""
    sent_epoch: int | None = None
    proposal_id: str | None = None
    ask_price: Decimal | None = None
    contract_id: str | None = None
    buy_price: Decimal | None = None
    purchase_time: int | None = None
    expiry_epoch: int | None = None
    expiry_ticks: int | None = None
    ticks_observed: int = 0
    result_digit: int | None = None
    profit: Decimal | None = None
    abandon_reason: str | None = None

    @property
    def is_outstanding(self) -> bool:
        return self.status.is_outstanding and self.abandon_reason is None

    @property
    def is_settled(self) -> bool:
        return self.status in (TradeStatus.WON, TradeStatus.LOST)

    def settlement_reached(self, epoch: int) -> bool:
        """Whether a tick at ``epoch`` settles this open trade.

        ``ticks_observed`` must already include the tick being checked.
        """
        if self.status is not TradeStatus.OPEN:
            return False
        if self.expiry_ticks is not None:
            return self.ticks_observed >= self.expiry_ticks
        if self.expiry_epoch is not None:
            return epoch >= self.expiry_epoch
        return self.ticks_observed >= 1

    def summary(self) -> dict[str, str | int | None]:
        """Flat, JSON-friendly view for logs and event sinks."""
        return {
            "id": self.id,
            "status": self.status.value,
            "contract_type": self.entry_type.value,
            "barrier": self.barrier,
            "stake": str(self.stake),
            "payout": str(self.payout),
            "entry_digit": self.entry_digit,
            "result_digit": self.result_digit,
            "contract_id": self.contract_id,
            "profit": str(self.profit) if self.profit is not None else None,
            "abandon_reason": self.abandon_reason,
        }
