"""Binance Futures liquidation stream, read-only.

Aggregates forced orders per asset over a rolling 5-minute window. A SELL
forced order is a long being liquidated (bearish pressure), a BUY is a
short being liquidated (bullish). The heavier side sets the direction and
its dollar volume sets the magnitude class.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

from updown.streams import ReconnectingStream

log = logging.getLogger(__name__)

FUTURES_SYMBOLS = {"BTCUSDT": "BTC", "ETHUSDT": "ETH", "SOLUSDT": "SOL", "XRPUSDT": "XRP"}
STREAMS = "/".join(f"{s.lower()}@forceOrder" for s in FUTURES_SYMBOLS)

RETENTION_S = 300
# Magnitude classes by one-sided 5m USD volume
STRENGTH_THRESHOLDS = (
    ("extreme", 5_000_000),
    ("strong", 2_000_000),
    ("moderate", 500_000),
)
STRENGTH_WEIGHTS = {"moderate": 1.0, "strong": 2.0, "extreme": 3.0}


@dataclass(frozen=True)
class LiquidationSignal:
    direction: str | None = None   # "Up" | "Down"
    strength: str | None = None    # "moderate" | "strong" | "extreme"
    volume: float = 0.0
    long_usd: float = 0.0
    short_usd: float = 0.0

    def score(self) -> float:
        if not self.direction or not self.strength:
            return 0.0
        w = STRENGTH_WEIGHTS.get(self.strength, 0.0)
        return w if self.direction == "Up" else -w


def classify(long_usd: float, short_usd: float) -> LiquidationSignal:
    """Turn one-sided liquidation totals into a directional signal."""
    if long_usd <= 0 and short_usd <= 0:
        return LiquidationSignal()
    if long_usd >= short_usd:
        direction, volume = "Down", long_usd
    else:
        direction, volume = "Up", short_usd
    strength = next((name for name, floor in STRENGTH_THRESHOLDS if volume >= floor), None)
    if strength is None:
        return LiquidationSignal(long_usd=long_usd, short_usd=short_usd, volume=volume)
    return LiquidationSignal(direction, strength, volume, long_usd, short_usd)


class LiquidationFeed(ReconnectingStream):
    name = "Binance Futures"

    def __init__(self, base_url: str, clock: Callable[[], float] = time.time):
        super().__init__(f"{base_url}/stream?streams={STREAMS}")
        self._clock = clock
        self._lock = threading.Lock()
        # asset -> deque of (timestamp, side, usd_value)
        self._events: dict[str, deque[tuple[float, str, float]]] = {a: deque() for a in FUTURES_SYMBOLS.values()}

    def _handle_message(self, msg: dict[str, Any]) -> None:
        data = msg.get("data") or msg
        if data.get("e") != "forceOrder":
            return
        order = data.get("o", {})
        asset = FUTURES_SYMBOLS.get(order.get("s", ""))
        if not asset:
            return
        qty = float(order["q"])
        price = float(order.get("ap") or order.get("p") or 0)
        ts = float(order.get("T", self._clock() * 1000)) / 1000.0
        self.record(asset, order["S"], qty * price, ts)

    def record(self, asset: str, side: str, usd_value: float, ts: float | None = None) -> None:
        with self._lock:
            events = self._events.setdefault(asset, deque())
            events.append((ts if ts is not None else self._clock(), side, usd_value))
            self._prune(events)
        log.debug("Liquidation: %s %s $%.0f", asset, side, usd_value)

    def _prune(self, events: deque) -> None:
        cutoff = self._clock() - RETENTION_S
        while events and events[0][0] < cutoff:
            events.popleft()

    def get_signal(self, asset: str) -> LiquidationSignal:
        with self._lock:
            events = self._events.get(asset)
            if not events:
                return LiquidationSignal()
            self._prune(events)
            long_usd = sum(v for _, side, v in events if side == "SELL")
            short_usd = sum(v for _, side, v in events if side == "BUY")
        return classify(long_usd, short_usd)
