"""Tick subscription and quote-to-digit normalization."""

from __future__ import annotations

from collections import deque
from decimal import Decimal
from typing import TYPE_CHECKING

from digitbot.core.logging import get_logger
from digitbot.models.messages import forget_all_ticks_request, ticks_request

if TYPE_CHECKING:
    from digitbot.interfaces import MessageTransport, SendOutcome
    from digitbot.models.messages import TickMessage

log = get_logger(__name__)

DEFAULT_HISTORY = 20


def quote_to_digit(quote: Decimal, pip_size: int | None = None) -> int:
    """Return the trailing decimal digit of a quote.

    With ``pip_size`` the quote is rendered with exactly that many
    decimals, so ``123.4`` at pip size 2 reads as ``123.40`` and yields 0.
    Without it the exact decimal text of the quote is used.
    """
    if pip_size is not None:
        text = f"{quote:.{pip_size}f}"
    else:
        text = format(quote, "f")
    digits = text.replace(".", "").lstrip("-")
    return int(digits[-1])


class TickFeed:
    """Keeps at most one tick subscription alive and turns ticks into digits."""

    def __init__(
        self,
        transport: MessageTransport,
        history_size: int = DEFAULT_HISTORY,
    ) -> None:
        self._transport = transport
        self._symbol: str | None = None
        self._digits: deque[int] = deque(maxlen=history_size)
        self._last_tick: TickMessage | None = None

    @property
    def symbol(self) -> str | None:
        return self._symbol

    @property
    def last_tick(self) -> TickMessage | None:
        return self._last_tick

    @property
    def recent_digits(self) -> list[int]:
        return list(self._digits)

    async def subscribe(self, symbol: str) -> SendOutcome:
        """Subscribe to ``symbol``, cancelling any prior tick stream first."""
        if self._symbol is not None:
            await self._transport.send(forget_all_ticks_request())
        previous, self._symbol = self._symbol, symbol
        outcome = await self._transport.send(ticks_request(symbol))
        log.info(
            "tick_feed.subscribed",
            symbol=symbol,
            previous=previous,
            outcome=outcome.value,
        )
        return outcome

    async def resubscribe(self) -> SendOutcome | None:
        """Re-issue the current subscription after a fresh authorization."""
        if self._symbol is None:
            return None
        return await self.subscribe(self._symbol)

    def on_tick(self, tick: TickMessage) -> int | None:
        """Digit for ``tick``, or None for a tick from a cancelled stream."""
        if tick.symbol and self._symbol and tick.symbol != self._symbol:
            log.debug("tick_feed.stale_tick", symbol=tick.symbol, current=self._symbol)
            return None
        digit = quote_to_digit(tick.quote, tick.pip_size)
        self._digits.append(digit)
        self._last_tick = tick
        return digit

    def clear_history(self) -> None:
        self._digits.clear()
        log.info("tick_feed.history_cleared")
