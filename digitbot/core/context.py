"""Bot context, the single object carrying config, state and the event sink."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from digitbot.core.logging import get_logger
from digitbot.interfaces import BotEvent
from digitbot.models.state import BotState

if TYPE_CHECKING:
    from digitbot.config.settings import BotConfig
    from digitbot.interfaces import EventSink

log = get_logger(__name__)


class LogEventSink:
    """Default event sink: forwards dashboard notifications to the log.

    Implements the EventSink protocol from digitbot.interfaces.
    """

    def __init__(self, name: str = "digitbot.events") -> None:
        self._log = get_logger(name)

    def publish(self, event: BotEvent, payload: dict[str, Any]) -> None:
        if event is BotEvent.LOG_LINE:
            self._log.info(
                "event.log_line",
                severity=payload.get("level", "info"),
                message=payload.get("message", ""),
            )
        else:
            self._log.debug(f"event.{event.value}", payload=payload)


@dataclass
class BotContext:
    """Everything components share, passed explicitly instead of globals."""

    config: BotConfig
    state: BotState = field(default_factory=BotState)
    events: EventSink = field(default_factory=LogEventSink)

    def publish(self, event: BotEvent, payload: dict[str, Any]) -> None:
        try:
            self.events.publish(event, payload)
        except Exception:
            log.warning("context.publish_failed", bot_event=event.value, exc_info=True)
