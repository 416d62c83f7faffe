"""Spot price ingestion: Binance trades + Coinbase ticker, quorum-averaged.

Both streams write into one ``QuoteBook``. A read averages every source
whose last update is younger than 30s; assets with no fresh source are
priced by a single CoinGecko REST call covering all of them. The Binance
trade stream also feeds a cumulative session VWAP, and funding rates are
polled from the futures REST API (cached 5 minutes).
"""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from updown.config import ASSETS, Config
from updown.streams import ReconnectingStream

log = logging.getLogger(__name__)

STALE_AFTER_S = 30.0
FUNDING_CACHE_S = 300.0
REST_TIMEOUT_S = 10.0

BINANCE_SYMBOLS = {"BTCUSDT": "BTC", "ETHUSDT": "ETH", "SOLUSDT": "SOL", "XRPUSDT": "XRP"}
COINBASE_PRODUCTS = {"BTC-USD": "BTC", "ETH-USD": "ETH", "SOL-USD": "SOL", "XRP-USD": "XRP"}
COINGECKO_IDS = {"bitcoin": "BTC", "ethereum": "ETH", "solana": "SOL", "ripple": "XRP"}
FUNDING_SYMBOLS = ("BTCUSDT", "ETHUSDT", "SOLUSDT")


@dataclass
class PriceQuote:
    price: float
    updated_at: float


@dataclass(frozen=True)
class PriceReading:
    asset: str
    price: float
    sources: tuple[str, ...]
    timestamp: float

    @property
    def source(self) -> str:
        return "multi" if len(self.sources) > 1 else self.sources[0]


@dataclass
class _Vwap:
    cum_pv: float = 0.0
    cum_v: float = 0.0

    @property
    def value(self) -> float | None:
        return self.cum_pv / self.cum_v if self.cum_v > 0 else None


class QuoteBook:
    """Per-asset, per-source latest quotes. Single writer per source, many readers."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._quotes: dict[str, dict[str, PriceQuote]] = {a: {} for a in ASSETS}
        self._vwap: dict[str, _Vwap] = {a: _Vwap() for a in ASSETS}

    def update(self, asset: str, source: str, price: float, volume: float | None = None,
               ts: float | None = None) -> None:
        if price <= 0:
            return
        with self._lock:
            self._quotes.setdefault(asset, {})[source] = PriceQuote(price, ts if ts is not None else self._clock())
            if volume:
                v = self._vwap.setdefault(asset, _Vwap())
                v.cum_pv += price * volume
                v.cum_v += volume

    def fresh(self, asset: str, max_age_s: float = STALE_AFTER_S) -> dict[str, float]:
        """Sources younger than ``max_age_s`` -> price."""
        now = self._clock()
        with self._lock:
            quotes = dict(self._quotes.get(asset, {}))
        return {src: q.price for src, q in quotes.items() if now - q.updated_at < max_age_s}

    def vwap(self, asset: str) -> float | None:
        with self._lock:
            v = self._vwap.get(asset)
            return v.value if v else None

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {
                a: {src: {"price": q.price, "age_s": round(self._clock() - q.updated_at, 1)} for src, q in qs.items()}
                for a, qs in self._quotes.items()
            }


class BinanceTradeStream(ReconnectingStream):
    name = "Binance"

    def __init__(self, base_url: str, book: QuoteBook):
        streams = "/".join(f"{s.lower()}@trade" for s in BINANCE_SYMBOLS)
        super().__init__(f"{base_url}/ws/{streams}")
        self._book = book

    def _handle_message(self, msg: dict[str, Any]) -> None:
        if msg.get("e") != "trade":
            return
        asset = BINANCE_SYMBOLS.get(msg.get("s", ""))
        if asset:
            self._book.update(asset, "binance", float(msg["p"]), volume=float(msg.get("q", 0) or 0))


class CoinbaseTickerStream(ReconnectingStream):
    name = "Coinbase"

    def __init__(self, url: str, book: QuoteBook):
        super().__init__(url)
        self._book = book

    async def _on_connect(self, ws) -> None:
        await ws.send(json.dumps({
            "type": "subscribe",
            "product_ids": list(COINBASE_PRODUCTS),
            "channels": ["ticker"],
        }))

    def _handle_message(self, msg: dict[str, Any]) -> None:
        if msg.get("type") != "ticker":
            return
        asset = COINBASE_PRODUCTS.get(msg.get("product_id", ""))
        if asset:
            self._book.update(asset, "coinbase", float(msg["price"]))


Fallback = Callable[[list[str]], Awaitable[dict[str, float]]]


class PriceFeeds:
    """Owns both spot streams plus the REST fallback and funding poller."""

    def __init__(self, cfg: Config, book: QuoteBook | None = None, fallback: Fallback | None = None,
                 clock: Callable[[], float] = time.time):
        self.cfg = cfg
        self._clock = clock
        self.book = book or QuoteBook(clock)
        self.binance = BinanceTradeStream(cfg.binance_ws_url, self.book)
        self.coinbase = CoinbaseTickerStream(cfg.coinbase_ws_url, self.book)
        self._fallback = fallback or self._fetch_coingecko
        self._funding: dict[str, float] = {}
        self._funding_fetched_at = 0.0
        self.fallback_calls = 0

    async def start(self) -> None:
        await self.binance.start()
        await self.coinbase.start()
        log.info("Price feeds initializing...")

    async def stop(self) -> None:
        await self.binance.stop()
        await self.coinbase.stop()

    async def get_prices(self, assets: list[str] | tuple[str, ...] = ASSETS) -> dict[str, PriceReading]:
        """Averaged fresh price per asset; one fallback call for all stale assets."""
        now = self._clock()
        result: dict[str, PriceReading] = {}
        stale: list[str] = []
        for asset in assets:
            fresh = self.book.fresh(asset)
            if fresh:
                result[asset] = PriceReading(
                    asset=asset,
                    price=sum(fresh.values()) / len(fresh),
                    sources=tuple(sorted(fresh)),
                    timestamp=now,
                )
            else:
                stale.append(asset)

        if stale:
            self.fallback_calls += 1
            log.warning("No fresh WS quote for %s, using REST fallback", ",".join(stale))
            try:
                fallback = await self._fallback(stale)
            except Exception:
                log.exception("Price fallback failed")
                fallback = {}
            for asset in stale:
                price = fallback.get(asset)
                if price:
                    result[asset] = PriceReading(asset=asset, price=float(price), sources=("coingecko",), timestamp=now)
        return result

    async def _fetch_coingecko(self, assets: list[str]) -> dict[str, float]:
        ids = ",".join(cid for cid, a in COINGECKO_IDS.items() if a in assets)
        url = f"{self.cfg.coingecko_url}/simple/price"
        try:
            async with httpx.AsyncClient(timeout=REST_TIMEOUT_S) as client:
                resp = await client.get(url, params={"ids": ids, "vs_currencies": "usd"})
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("CoinGecko fallback failed: %s", exc)
            return {}
        return {
            asset: float(data[cid]["usd"])
            for cid, asset in COINGECKO_IDS.items()
            if asset in assets and data.get(cid, {}).get("usd")
        }

    async def refresh_funding(self) -> None:
        """Poll latest funding rates at most once per 5 minutes."""
        if self._clock() - self._funding_fetched_at < FUNDING_CACHE_S:
            return
        url = f"{self.cfg.binance_futures_rest}/fapi/v1/fundingRate"
        try:
            async with httpx.AsyncClient(timeout=REST_TIMEOUT_S) as client:
                for symbol in FUNDING_SYMBOLS:
                    resp = await client.get(url, params={"symbol": symbol, "limit": 1})
                    resp.raise_for_status()
                    rows = resp.json()
                    if rows:
                        self._funding[symbol.replace("USDT", "")] = float(rows[0]["fundingRate"])
            self._funding_fetched_at = self._clock()
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            log.warning("Funding rate fetch failed: %s", exc)

    def funding_rate(self, asset: str) -> float | None:
        return self._funding.get(asset)

    def vwap(self, asset: str) -> float | None:
        return self.book.vwap(asset)

    def status(self) -> dict[str, Any]:
        return {
            "binance": self.binance.status(),
            "coinbase": self.coinbase.status(),
            "quotes": self.book.snapshot(),
            "fallback_calls": self.fallback_calls,
        }
