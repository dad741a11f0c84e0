"""Venue wire messages: typed inbound union and outbound request builders.

Inbound frames are plain JSON objects keyed by message type::

    {"error": {"code": ..., "message": ...}, "msg_type": "buy", "req_id": 7}
    {"authorize": {"balance": 100.0, "currency": "USD", "loginid": ...}}
    {"balance": {"balance": 99.65, "currency": "USD"}}
    {"proposal": {"id": "...", "ask_price": 0.35}, "req_id": 7}
    {"buy": {"contract_id": 1, "buy_price": 0.35, "purchase_time": 1700000000}}
    {"tick": {"quote": 6543.21, "epoch": 1700000001, "pip_size": 2}}
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ValidationError

from digitbot.core.logging import get_logger
from digitbot.models.trade import EntryType

log = get_logger(__name__)


class ErrorMessage(BaseModel):
    message: str
    code: str = ""
    msg_type: str = ""
    req_id: int | None = None

    model_config = {"frozen": True}


class AuthorizeMessage(BaseModel):
    balance: Decimal | None = None
    currency: str = "USD"
    loginid: str = ""

    model_config = {"frozen": True}


class BalanceMessage(BaseModel):
    balance: Decimal
    currency: str = "USD"

    model_config = {"frozen": True}


class ProposalMessage(BaseModel):
    id: str
    ask_price: Decimal
    payout: Decimal | None = None
    req_id: int | None = None

    model_config = {"frozen": True}


class BuyMessage(BaseModel):
    contract_id: str
    buy_price: Decimal
    purchase_time: int | None = None
    req_id: int | None = None

    model_config = {"frozen": True}


class TickMessage(BaseModel):
    quote: Decimal
    epoch: int
    symbol: str = ""
    pip_size: int | None = None

    model_config = {"frozen": True}


class ConnectionLost(BaseModel):
    """Raised by the transport (as an event, not an exception) on every close."""

    will_retry: bool
    attempts: int = 0
    reason: str = ""

    model_config = {"frozen": True}


InboundMessage = (
    ErrorMessage
    | AuthorizeMessage
    | BalanceMessage
    | ProposalMessage
    | BuyMessage
    | TickMessage
    | ConnectionLost
)


def parse_message(data: dict[str, Any]) -> InboundMessage | None:
    """Turn a decoded venue frame into a typed message.

    Returns None for frames the bot does not act on (ping replies,
    forget acknowledgements, malformed payloads).
    """
    req_id = data.get("req_id")
    try:
        if "error" in data:
            error = data["error"] or {}
            return ErrorMessage(
                message=str(error.get("message", "unknown error")),
                code=str(error.get("code", "")),
                msg_type=str(data.get("msg_type", "")),
                req_id=req_id,
            )
        if isinstance(data.get("authorize"), dict):
            return AuthorizeMessage.model_validate(data["authorize"])
        if isinstance(data.get("balance"), dict):
            return BalanceMessage.model_validate(data["balance"])
        if isinstance(data.get("proposal"), dict):
            return ProposalMessage.model_validate({**data["proposal"], "req_id": req_id})
        if isinstance(data.get("buy"), dict):
            buy = dict(data["buy"])
            buy["contract_id"] = str(buy.get("contract_id", ""))
            return BuyMessage.model_validate({**buy, "req_id": req_id})
        if isinstance(data.get("tick"), dict):
            return TickMessage.model_validate(data["tick"])
    except (ValidationError, TypeError):
        log.warning("messages.parse_failed", msg_type=data.get("msg_type"), exc_info=True)
        return None
    return None


# ---------------------------------------------------------------------------
# Outbound requests
# ---------------------------------------------------------------------------


def authorize_request(token: str) -> dict[str, Any]:
    return {"authorize": token}


def ticks_request(symbol: str) -> dict[str, Any]:
    return {"ticks": symbol, "subscribe": 1}


def forget_all_ticks_request() -> dict[str, Any]:
    return {"forget_all": "ticks"}


def balance_request() -> dict[str, Any]:
    return {"balance": 1, "subscribe": 1}


def ping_request() -> dict[str, Any]:
    return {"ping": 1}


def proposal_request(
    *,
    amount: Decimal,
    entry_type: EntryType,
    currency: str,
    duration: int,
    duration_unit: str,
    symbol: str,
    barrier: int | None = None,
    req_id: int | None = None,
) -> dict[str, Any]:
    """Build a stake-basis price proposal for a digit contract."""
    request: dict[str, Any] = {
        "proposal": 1,
        "amount": float(amount),
        "basis": "stake",
        "contract_type": entry_type.value,
        "currency": currency,
        "duration": duration,
        "duration_unit": duration_unit,
        "symbol": symbol,
    }
    if barrier is not None:
        request["barrier"] = str(barrier)
    if req_id is not None:
        request["req_id"] = req_id
    return request


def buy_request(proposal_id: str, price: Decimal, req_id: int | None = None) -> dict[str, Any]:
    request: dict[str, Any] = {"buy": proposal_id, "price": float(price)}
    if req_id is not None:
        request["req_id"] = req_id
    return request
