"""Result reconciliation for recorded bets.

After a window closes the Gamma event reports final outcome prices; the
side priced at 0.99 or above won. Executed bets feed their realized PnL
back into the daily trading state, which closes the position.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import requests

from updown.active_trades import ActiveTrades
from updown.config import Config
from updown.execution import Executor
from updown.http_session import get_json
from updown.market_discovery import _parse_list

log = logging.getLogger(__name__)

WINNER_PRICE = 0.99
# Settled bets older than this are dropped from the active book
SETTLED_RETENTION_S = 24 * 3600


@dataclass(frozen=True)
class Resolution:
    slug: str
    winner: str          # "Up" | "Down"
    result: str          # "Win" | "Loss"
    pnl: float


def settle_pnl(stake: float, entry_odds: float, won: bool) -> float:
    if not won:
        return round(-stake, 2)
    if entry_odds <= 0:
        return 0.0
    return round(stake * (1.0 / entry_odds - 1.0), 2)


def winning_outcome(event: dict[str, Any]) -> str | None:
    """'Up' or 'Down' once the event's market is closed, else None."""
    markets = event.get("markets") or []
    if not markets:
        return None
    market = markets[0]
    if not (market.get("closed") or event.get("closed")):
        return None
    outcomes = _parse_list(market.get("outcomes")) or ["Up", "Down"]
    prices = _parse_list(market.get("outcomePrices"))
    for label, price in zip(outcomes, prices):
        try:
            if float(price) >= WINNER_PRICE:
                label = str(label).capitalize()
                return label if label in ("Up", "Down") else None
        except (TypeError, ValueError):
            continue
    return None


class ResultChecker:
    def __init__(self, cfg: Config, trades: ActiveTrades, executor: Executor | None = None,
                 fetch: Callable[..., Any] | None = None,
                 clock: Callable[[], float] = time.time):
        self.cfg = cfg
        self.trades = trades
        self.executor = executor
        self._fetch = fetch or get_json
        self._clock = clock

    def _lookup(self, slug: str) -> str | None:
        try:
            events = self._fetch(f"{self.cfg.gamma_host}/events", params={"slug": slug})
        except (requests.RequestException, ValueError) as exc:
            log.warning("Result lookup failed for %s: %s", slug, exc)
            return None
        if not events:
            return None
        return winning_outcome(events[0])

    def check(self) -> list[Resolution]:
        """Settle every open bet whose market has closed."""
        resolved: list[Resolution] = []
        for slug, trade in self.trades.all().items():
            if trade.get("result"):
                continue
            winner = self._lookup(slug)
            if winner is None:
                continue

            won = trade.get("direction") == winner
            pnl = settle_pnl(float(trade.get("stake") or 0), float(trade.get("entryOdds") or 0), won)
            res = Resolution(slug, winner, "Win" if won else "Loss", pnl)

            def _settle(entry, res=res):
                entry["result"] = res.result
                entry["winner"] = res.winner
                entry["pnl"] = res.pnl
                entry["resolvedAt"] = self._clock()

            self.trades.update(slug, _settle)
            if trade.get("executed") and self.executor is not None:
                self.executor.record_pnl(pnl)
            log.info("RESOLVED %s: %s %s -> %s | %s $%+.2f",
                     slug, trade.get("asset"), trade.get("direction"), winner, res.result, pnl)
            resolved.append(res)

        cutoff = self._clock() - SETTLED_RETENTION_S
        self.trades.prune(lambda _slug, t: not t.get("result") or float(t.get("resolvedAt") or 0) > cutoff)
        return resolved
