"""Coinbase level-2 order book depth and imbalance signal.

Keeps the top 50 levels per side for each product, patched incrementally
from ``l2update`` messages. Every update recomputes the public projection:
bid/ask dollar depth, imbalance ratio, a large-order flag (one level worth
more than $500k) and a pull flag (one side's depth halving versus a
snapshot taken 1.5-3s earlier).
"""
from __future__ import annotations

import json
import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

from updown.streams import ReconnectingStream

log = logging.getLogger(__name__)

PRODUCTS = {"BTC-USD": "BTC", "ETH-USD": "ETH", "SOL-USD": "SOL"}

MAX_LEVELS = 50
TRIM_AFTER_LEVELS = 60
UP_IMBALANCE = 3.0            # 3:1 bid skew
DOWN_IMBALANCE = 0.33         # 1:3 ask skew
LARGE_LEVEL_USD = 500_000
PULL_DROP_RATIO = 0.5
PULL_WINDOW_S = (1.5, 3.0)
DEPTH_HISTORY_LEN = 10
SIGNAL_MAX_AGE_S = 60.0


@dataclass(frozen=True)
class OrderBookSignal:
    imbalance: float = 1.0
    direction: str | None = None   # "Up" | "Down" | None
    large_sweep: bool = False
    mm_pull: bool = False
    bid_usd: float = 0.0
    ask_usd: float = 0.0
    updated_at: float = 0.0

    def score(self) -> float:
        """Order-flow contribution to a signal score, clamped to +/-1."""
        if not self.direction:
            return 0.0
        sign = 1.0 if self.direction == "Up" else -1.0
        total = min(abs(math.log(self.imbalance)), 1.0) * 0.5 * sign if self.imbalance > 0 else 0.0
        if self.large_sweep:
            total += 0.3 * sign
        if self.mm_pull:
            total += 0.2 * sign
        return max(-1.0, min(1.0, total))


NEUTRAL = OrderBookSignal()


def classify_imbalance(imbalance: float) -> str | None:
    if imbalance > UP_IMBALANCE:
        return "Up"
    if imbalance < DOWN_IMBALANCE:
        return "Down"
    return None


class OrderBookState:
    """Bounded price->size maps for one product plus the derived projection."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.bids: dict[float, float] = {}
        self.asks: dict[float, float] = {}
        self._depth_history: deque[tuple[float, float, float]] = deque(maxlen=DEPTH_HISTORY_LEN)
        self.signal = NEUTRAL

    def apply_snapshot(self, bids: list, asks: list) -> OrderBookSignal:
        self.bids = {float(p): float(s) for p, s, *_ in bids[:MAX_LEVELS]}
        self.asks = {float(p): float(s) for p, s, *_ in asks[:MAX_LEVELS]}
        return self._recompute()

    def apply_changes(self, changes: list) -> OrderBookSignal:
        for side, price, size in changes:
            target = self.bids if side == "buy" else self.asks
            p, s = float(price), float(size)
            if s == 0:
                target.pop(p, None)
            else:
                target[p] = s
            if len(target) > TRIM_AFTER_LEVELS:
                keep = sorted(target, reverse=(side == "buy"))[:MAX_LEVELS]
                kept = {k: target[k] for k in keep}
                target.clear()
                target.update(kept)
        return self._recompute()

    def _recompute(self) -> OrderBookSignal:
        now = self._clock()
        bid_usd = sum(p * s for p, s in self.bids.items())
        ask_usd = sum(p * s for p, s in self.asks.items())
        imbalance = bid_usd / ask_usd if ask_usd > 0 else 1.0
        direction = classify_imbalance(imbalance)

        large = any(p * s > LARGE_LEVEL_USD for p, s in self.bids.items()) or \
            any(p * s > LARGE_LEVEL_USD for p, s in self.asks.items())

        pull = False
        self._depth_history.append((now, bid_usd, ask_usd))
        ref = next(
            (h for h in self._depth_history if PULL_WINDOW_S[0] <= now - h[0] <= PULL_WINDOW_S[1]),
            None,
        )
        if ref is not None:
            if bid_usd < ref[1] * PULL_DROP_RATIO:
                pull = True
                direction = direction or "Down"   # bids pulled
            if ask_usd < ref[2] * PULL_DROP_RATIO:
                pull = True
                direction = direction or "Up"     # asks pulled

        self.signal = OrderBookSignal(
            imbalance=imbalance,
            direction=direction,
            large_sweep=large,
            mm_pull=pull,
            bid_usd=bid_usd,
            ask_usd=ask_usd,
            updated_at=now,
        )
        return self.signal


class OrderBookFeed(ReconnectingStream):
    """Coinbase ``level2_batch`` subscriber publishing one signal per asset."""

    name = "Coinbase L2"

    def __init__(self, url: str, products: dict[str, str] | None = None,
                 clock: Callable[[], float] = time.time):
        super().__init__(url)
        self._clock = clock
        self._products = dict(products or PRODUCTS)
        self._lock = threading.Lock()
        self._books = {pid: OrderBookState(clock) for pid in self._products}

    async def _on_connect(self, ws) -> None:
        await ws.send(json.dumps({
            "type": "subscribe",
            "product_ids": list(self._products),
            "channels": ["level2_batch"],
        }))

    def _handle_message(self, msg: dict[str, Any]) -> None:
        kind = msg.get("type")
        book = self._books.get(msg.get("product_id", ""))
        if book is None:
            return
        with self._lock:
            if kind == "snapshot":
                book.apply_snapshot(msg.get("bids") or [], msg.get("asks") or [])
            elif kind == "l2update":
                book.apply_changes(msg.get("changes") or [])

    def get_signal(self, asset: str) -> OrderBookSignal:
        """Latest projection for ``asset``; neutral if unknown or older than 60s."""
        pid = next((p for p, a in self._products.items() if a == asset), None)
        if pid is None:
            return NEUTRAL
        with self._lock:
            sig = self._books[pid].signal
        if self._clock() - sig.updated_at > SIGNAL_MAX_AGE_S:
            return NEUTRAL
        return sig
