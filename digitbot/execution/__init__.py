"""Execution layer: the trade lifecycle from proposal to settlement."""

from __future__ import annotations

from digitbot.execution.lifecycle import HISTORY_SIZE, LifecyclePhase, TradeLifecycleManager

__all__ = [
    "HISTORY_SIZE",
    "LifecyclePhase",
    "TradeLifecycleManager",
]
