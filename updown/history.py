"""Per-asset price and odds history.

Appended once per cycle inside a single store transaction and handed to the
signal code as an immutable snapshot, so every asset in a cycle reads the
same series.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping

from updown import store as keys
from updown.indicators import volatility_ratio
from updown.store import StateStore

PRICE_HISTORY_LEN = 50
ODDS_HISTORY_LEN = 100


@dataclass(frozen=True)
class PriceChange:
    change: float      # fraction, latest vs previous sample
    latest: float
    previous: float


@dataclass(frozen=True)
class CorrelationSignal:
    direction: str
    btc_move: float
    message: str


@dataclass(frozen=True)
class PriceHistory:
    samples: Mapping[str, tuple[dict, ...]] = field(default_factory=dict)

    def series(self, asset: str) -> tuple[dict, ...]:
        return self.samples.get(asset, ())

    def prices(self, asset: str) -> list[float]:
        return [s["price"] for s in self.series(asset)]

    def last_timestamp(self, asset: str) -> float | None:
        series = self.series(asset)
        return series[-1]["ts"] if series else None

    def entry_at_or_before(self, asset: str, cutoff_ts: float) -> dict | None:
        """Oldest sample taken at or before ``cutoff_ts``."""
        for s in self.series(asset):
            if s["ts"] <= cutoff_ts:
                return s
        return None

    def last_change(self, asset: str) -> PriceChange | None:
        series = self.series(asset)
        if len(series) < 2:
            return None
        latest, prev = series[-1]["price"], series[-2]["price"]
        if not prev:
            return None
        return PriceChange(change=(latest - prev) / prev, latest=latest, previous=prev)

    def trend(self, asset: str, minutes: float, now_ts: float) -> float | None:
        """Fractional move from the first sample older than ``minutes`` to the latest."""
        series = self.series(asset)
        if len(series) < 2:
            return None
        old = self.entry_at_or_before(asset, now_ts - minutes * 60)
        if old is None or not old["price"]:
            return None
        return (series[-1]["price"] - old["price"]) / old["price"]

    def volatility_ratio(self, asset: str) -> float | None:
        return volatility_ratio(self.prices(asset))

    def btc_correlation(self, btc_price: float | None, now_ts: float,
                        threshold: float, window_min: float) -> CorrelationSignal | None:
        """BTC leads: a large move over the window biases the alts."""
        if not btc_price or len(self.series("BTC")) < 2:
            return None
        old = self.entry_at_or_before("BTC", now_ts - window_min * 60)
        if old is None or not old["price"]:
            return None
        move = (btc_price - old["price"]) / old["price"]
        if abs(move) < threshold:
            return None
        direction = "Up" if move > 0 else "Down"
        return CorrelationSignal(
            direction=direction,
            btc_move=move,
            message=f"BTC moved {move * 100:.2f}% in {window_min:g}min, alts likely to follow",
        )


@dataclass(frozen=True)
class OddsHistory:
    samples: Mapping[str, tuple[dict, ...]] = field(default_factory=dict)

    def up_odds(self, asset: str) -> list[float]:
        return [s["upOdds"] for s in self.samples.get(asset, ())]


def _freeze(raw: dict) -> dict[str, tuple[dict, ...]]:
    return {asset: tuple(entries) for asset, entries in (raw or {}).items()}


def record_prices(store: StateStore, prices: Mapping[str, float], now: datetime) -> PriceHistory:
    """Append this cycle's prices and return the updated snapshot."""
    ts = now.timestamp()
    iso = now.isoformat()

    def _append(history):
        history = history or {}
        for asset, price in prices.items():
            if not price:
                continue
            series = history.setdefault(asset, [])
            series.append({"price": price, "ts": ts, "timestamp": iso})
            history[asset] = series[-PRICE_HISTORY_LEN:]
        return history

    return PriceHistory(_freeze(store.update(keys.PRICE_HISTORY, _append, default={})))


def load_prices(store: StateStore) -> PriceHistory:
    return PriceHistory(_freeze(store.get(keys.PRICE_HISTORY, {})))


def record_odds(store: StateStore, up_odds: Mapping[str, float], now: datetime) -> OddsHistory:
    ts = now.timestamp()

    def _append(history):
        history = history or {}
        for asset, odds in up_odds.items():
            series = history.setdefault(asset, [])
            series.append({"upOdds": odds, "ts": ts})
            history[asset] = series[-ODDS_HISTORY_LEN:]
        return history

    return OddsHistory(_freeze(store.update(keys.ODDS_HISTORY, _append, default={})))
