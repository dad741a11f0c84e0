"""Protocol interfaces between digitbot components and their collaborators."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from digitbot.models.messages import InboundMessage


class SendOutcome(str, Enum):
    """Result of handing a message to the transport."""

    SENT = "sent"
    QUEUED = "queued"
    FAILED = "failed"


class BotEvent(str, Enum):
    """Push notifications a dashboard can subscribe to."""

    STATE_CHANGED = "state_changed"
    TRADE_PENDING = "trade_pending"
    TRADE_SETTLED = "trade_settled"
    CONFIG_CHANGED = "config_changed"
    LOG_LINE = "log_line"


class RiskDecision:
    """Result of a risk guard check. ``approved=False`` means stop trading."""

    def __init__(self, approved: bool, reason: str = "") -> None:
        self.approved = approved
        self.reason = reason

    def __bool__(self) -> bool:
        return self.approved

    def __repr__(self) -> str:
        return f"RiskDecision(approved={self.approved}, reason={self.reason!r})"


class CommandResult:
    """Outcome of a dashboard/CLI command. Commands never raise."""

    def __init__(self, ok: bool, message: str = "") -> None:
        self.ok = ok
        self.message = message

    def __bool__(self) -> bool:
        return self.ok

    def __repr__(self) -> str:
        return f"CommandResult(ok={self.ok}, message={self.message!r})"


@runtime_checkable
class MessageTransport(Protocol):
    """Protocol for the venue connection as seen by feeds and the lifecycle."""

    async def send(self, message: dict[str, Any]) -> SendOutcome: ...

    @property
    def is_connected(self) -> bool: ...


@runtime_checkable
class MessageDispatcher(Protocol):
    """Receives every inbound message, strictly one at a time."""

    async def __call__(self, message: InboundMessage) -> None: ...


@runtime_checkable
class EventSink(Protocol):
    """Protocol for dashboard push transports."""

    def publish(self, event: BotEvent, payload: dict[str, Any]) -> None: ...
