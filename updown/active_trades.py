"""Bets placed per market window.

Keyed by market slug. ``record()`` is the only writer and refuses a slug
that already holds a bet, which makes a window's bet idempotent across
duplicate evaluations.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from updown import store as keys
from updown.store import StateStore

log = logging.getLogger(__name__)


class ActiveTrades:
    def __init__(self, store: StateStore):
        self.store = store

    def all(self) -> dict[str, dict[str, Any]]:
        return self.store.get(keys.ACTIVE_TRADES, {}) or {}

    def has_bet(self, slug: str) -> bool:
        return slug in self.all()

    def record(self, slug: str, trade: dict[str, Any], now: datetime) -> bool:
        """Store the bet for ``slug``. Returns False if one was already recorded."""
        added = False

        def _add(trades):
            nonlocal added
            trades = trades or {}
            if slug in trades:
                return trades
            entry = dict(trade)
            entry["timestamp"] = now.isoformat()
            start = entry.get("windowStart")
            if start:
                try:
                    started = datetime.fromisoformat(str(start).replace("Z", "+00:00"))
                    entry["elapsedMinutes"] = round((now - started).total_seconds() / 60, 1)
                except ValueError:
                    pass
            trades[slug] = entry
            added = True
            return trades

        self.store.update(keys.ACTIVE_TRADES, _add, default={})
        return added

    def update(self, slug: str, fn: Callable[[dict[str, Any]], None]) -> dict[str, Any] | None:
        """Mutate one stored bet in place; returns the updated entry."""
        result: dict[str, Any] | None = None

        def _apply(trades):
            nonlocal result
            trades = trades or {}
            if slug in trades:
                fn(trades[slug])
                result = trades[slug]
            return trades

        self.store.update(keys.ACTIVE_TRADES, _apply, default={})
        return result

    def prune(self, keep: Callable[[str, dict[str, Any]], bool]) -> int:
        removed = 0

        def _prune(trades):
            nonlocal removed
            trades = trades or {}
            kept = {slug: t for slug, t in trades.items() if keep(slug, t)}
            removed = len(trades) - len(kept)
            return kept

        self.store.update(keys.ACTIVE_TRADES, _prune, default={})
        if removed:
            log.info("Pruned %d settled bets", removed)
        return removed
