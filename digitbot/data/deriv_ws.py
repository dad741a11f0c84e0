"""Deriv WebSocket connection with authorization, queueing and reconnect.

Every inbound frame is decoded, parsed into a typed message and awaited
through a single dispatch callable, so handlers run one at a time in
arrival order.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from collections import deque
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

import websockets

from digitbot.config.settings import ConnectionSettings
from digitbot.core.logging import get_logger
from digitbot.interfaces import SendOutcome
from digitbot.models.messages import (
    AuthorizeMessage,
    ConnectionLost,
    ErrorMessage,
    authorize_request,
    parse_message,
    ping_request,
)

if TYPE_CHECKING:
    from digitbot.interfaces import MessageDispatcher
    from digitbot.models.messages import InboundMessage

log = get_logger(__name__)


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AUTHORIZING = "authorizing"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    EXHAUSTED = "exhausted"


class DerivConnection:
    """Duplex venue connection.

    Implements the MessageTransport protocol from digitbot.interfaces.

    Messages sent before authorization succeeds are queued and flushed
    in FIFO order once it does. An unexpected close while a token is set
    schedules a reconnect after ``reconnect_delay`` seconds, growing the
    delay by ``backoff_factor`` up to the configured cap; after
    ``max_reconnect_attempts`` consecutive failures the connection is
    EXHAUSTED until the next ``connect(token)``.
    """

    def __init__(
        self,
        settings: ConnectionSettings | None = None,
        dispatch: MessageDispatcher | None = None,
    ) -> None:
        self._settings = settings or ConnectionSettings()
        self._dispatch = dispatch
        self._ws: Any = None
        self._token: str | None = None
        self._state = ConnectionState.IDLE
        self._queue: deque[dict[str, Any]] = deque()
        self._reconnect_attempts = 0
        self._reconnect_delay = self._settings.reconnect_delay_seconds
        self._conn_task: asyncio.Task[None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def reconnect_delay(self) -> float:
        return self._reconnect_delay

    @property
    def queued(self) -> int:
        return len(self._queue)

    def set_dispatch(self, dispatch: MessageDispatcher) -> None:
        self._dispatch = dispatch

    def stats(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "reconnect_attempts": self._reconnect_attempts,
            "reconnect_delay": self._reconnect_delay,
            "max_reconnect_attempts": self._settings.max_reconnect_attempts,
            "queued": len(self._queue),
            "has_token": self._token is not None,
        }

    async def connect(self, token: str) -> None:
        """Replace any existing connection with a fresh one for ``token``."""
        await self._teardown()
        self._token = token
        self._reconnect_attempts = 0
        self._reconnect_delay = self._settings.reconnect_delay_seconds
        self._set_state(ConnectionState.CONNECTING)
        self._conn_task = asyncio.create_task(self._connection_loop())
        log.info("deriv_ws.starting", url=self._settings.ws_url)

    async def disconnect(self) -> None:
        """Tear down unconditionally. No reconnect follows."""
        self._token = None
        self._queue.clear()
        await self._teardown()
        self._set_state(ConnectionState.IDLE)
        log.info("deriv_ws.disconnected")

    async def send(self, message: dict[str, Any]) -> SendOutcome:
        """Transmit now when authorized, otherwise queue for the next flush."""
        if self._state is not ConnectionState.CONNECTED or self._ws is None:
            self._queue.append(message)
            log.debug("deriv_ws.queued", queued=len(self._queue), keys=sorted(message))
            return SendOutcome.QUEUED
        return await self._transmit(message)

    async def _transmit(self, message: dict[str, Any]) -> SendOutcome:
        if self._ws is None:
            return SendOutcome.FAILED
        try:
            await self._ws.send(json.dumps(message))
        except Exception:
            log.warning("deriv_ws.send_failed", keys=sorted(message), exc_info=True)
            return SendOutcome.FAILED
        return SendOutcome.SENT

    async def _flush_queue(self) -> None:
        flushed = 0
        while self._queue:
            message = self._queue.popleft()
            if await self._transmit(message) is SendOutcome.FAILED:
                self._queue.appendleft(message)
                break
            flushed += 1
        if flushed:
            log.info("deriv_ws.queue_flushed", flushed=flushed, remaining=len(self._queue))

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            log.debug("deriv_ws.state", old=self._state.value, new=state.value)
        self._state = state

    def _schedule_reconnect(self) -> float | None:
        """Account for one unexpected close.

        Returns the delay to wait before reconnecting, or None when no
        reconnect should happen (manual disconnect or attempts exhausted).
        """
        if self._token is None:
            return None
        if self._reconnect_attempts >= self._settings.max_reconnect_attempts:
            self._set_state(ConnectionState.EXHAUSTED)
            log.error(
                "deriv_ws.reconnect_exhausted",
                attempts=self._reconnect_attempts,
            )
            return None
        self._reconnect_attempts += 1
        delay = self._reconnect_delay
        self._reconnect_delay = min(
            delay * self._settings.backoff_factor,
            self._settings.max_reconnect_delay_seconds,
        )
        self._set_state(ConnectionState.RECONNECTING)
        return delay

    async def _connection_loop(self) -> None:
        """Main loop: connect, authorize, receive, reconnect on failure."""
        while self._token is not None:
            reason = "closed by venue"
            try:
                self._set_state(ConnectionState.CONNECTING)
                async with websockets.connect(
                    self._settings.url,
                    ping_interval=20,
                    ping_timeout=10,
                ) as ws:
                    self._ws = ws
                    self._set_state(ConnectionState.AUTHORIZING)
                    log.info("deriv_ws.connected", url=self._settings.ws_url)
                    await self._transmit(authorize_request(self._token))

                    async for raw_msg in ws:
                        await self._handle_message(raw_msg)

            except asyncio.CancelledError:
                break
            except Exception as exc:
                reason = f"{type(exc).__name__}: {exc}"
                log.warning("deriv_ws.connection_error", reason=reason, exc_info=True)

            self._ws = None
            self._stop_keepalive()
            delay = self._schedule_reconnect()
            if self._token is None:
                break
            await self._notify(
                ConnectionLost(
                    will_retry=delay is not None,
                    attempts=self._reconnect_attempts,
                    reason=reason,
                ),
            )
            if delay is None:
                break
            log.warning(
                "deriv_ws.reconnecting",
                delay_s=delay,
                attempt=self._reconnect_attempts,
                max_attempts=self._settings.max_reconnect_attempts,
            )
            await asyncio.sleep(delay)

    async def _handle_message(self, raw_msg: str | bytes) -> None:
        """Decode, parse and dispatch one inbound frame."""
        try:
            data = json.loads(raw_msg, parse_float=Decimal)
        except (json.JSONDecodeError, TypeError):
            log.warning("deriv_ws.invalid_json", raw=str(raw_msg)[:200])
            return
        if not isinstance(data, dict):
            return

        message = parse_message(data)
        if message is None:
            return

        if isinstance(message, AuthorizeMessage):
            await self._on_authorized(message)
        elif isinstance(message, ErrorMessage) and message.msg_type == "authorize":
            log.error("deriv_ws.authorize_failed", code=message.code, error=message.message)

        await self._notify(message)

    async def _on_authorized(self, message: AuthorizeMessage) -> None:
        self._set_state(ConnectionState.CONNECTED)
        self._reconnect_attempts = 0
        self._reconnect_delay = self._settings.reconnect_delay_seconds
        log.info("deriv_ws.authorized", loginid=message.loginid, currency=message.currency)
        await self._flush_queue()
        self._start_keepalive()

    async def _notify(self, message: InboundMessage) -> None:
        if self._dispatch is None:
            return
        try:
            await self._dispatch(message)
        except Exception:
            log.error(
                "deriv_ws.dispatch_error",
                msg_type=type(message).__name__,
                exc_info=True,
            )

    def _start_keepalive(self) -> None:
        self._stop_keepalive()
        if self._settings.keepalive_interval_seconds > 0:
            self._keepalive_task = asyncio.create_task(self._keepalive_loop())

    def _stop_keepalive(self) -> None:
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            self._keepalive_task = None

    async def _keepalive_loop(self) -> None:
        interval = self._settings.keepalive_interval_seconds
        while True:
            await asyncio.sleep(interval)
            if self._state is ConnectionState.CONNECTED:
                await self._transmit(ping_request())

    async def _teardown(self) -> None:
        keepalive, self._keepalive_task = self._keepalive_task, None
        if keepalive is not None:
            keepalive.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await keepalive

        task, self._conn_task = self._conn_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception:
                log.debug("deriv_ws.close_failed", exc_info=True)
            self._ws = None
