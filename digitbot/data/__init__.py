"""Venue connectivity: websocket transport and tick feed."""

from __future__ import annotations

from digitbot.data.deriv_ws import ConnectionState, DerivConnection
from digitbot.data.tick_feed import TickFeed, quote_to_digit

__all__ = [
    "ConnectionState",
    "DerivConnection",
    "TickFeed",
    "quote_to_digit",
]
