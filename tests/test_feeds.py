from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from websockets.exceptions import ConnectionClosed

from updown import streams
from updown.liquidation_feed import LiquidationFeed, classify
from updown.orderbook_feed import NEUTRAL, OrderBookFeed, OrderBookState
from updown.price_feeds import PriceFeeds


class RecordingFallback:
    def __init__(self, prices=None, fail=False):
        self.prices = prices or {}
        self.fail = fail
        self.calls: list[list[str]] = []

    async def __call__(self, assets):
        self.calls.append(list(assets))
        if self.fail:
            raise RuntimeError("rate limited")
        return {a: self.prices[a] for a in assets if a in self.prices}


@pytest.fixture
def feeds(cfg, clock):
    fallback = RecordingFallback({"BTC": 60000.0, "ETH": 3000.0, "SOL": 150.0})
    f = PriceFeeds(cfg, fallback=fallback, clock=clock)
    f.test_fallback = fallback
    return f


def _binance(asset_symbol, price, qty="0.5"):
    return json.dumps({"e": "trade", "s": asset_symbol, "p": str(price), "q": qty})


def _coinbase(product, price):
    return json.dumps({"type": "ticker", "product_id": product, "price": str(price)})


class TestPriceFeeds:
    @pytest.mark.asyncio
    async def test_averages_fresh_sources(self, feeds):
        feeds.binance._dispatch(_binance("BTCUSDT", 60000))
        feeds.coinbase._dispatch(_coinbase("BTC-USD", 60100))
        prices = await feeds.get_prices(["BTC"])
        assert prices["BTC"].price == pytest.approx(60050)
        assert prices["BTC"].source == "multi"
        assert feeds.fallback_calls == 0

    @pytest.mark.asyncio
    async def test_stale_source_excluded(self, feeds, clock):
        feeds.binance._dispatch(_binance("BTCUSDT", 59000))
        clock.now += 31
        feeds.coinbase._dispatch(_coinbase("BTC-USD", 60100))
        prices = await feeds.get_prices(["BTC"])
        assert prices["BTC"].price == 60100
        assert prices["BTC"].sources == ("coinbase",)

    @pytest.mark.asyncio
    async def test_all_stale_calls_fallback_once(self, feeds, clock):
        feeds.binance._dispatch(_binance("BTCUSDT", 59000))
        clock.now += 45
        prices = await feeds.get_prices(["BTC", "ETH", "SOL"])
        assert feeds.test_fallback.calls == [["BTC", "ETH", "SOL"]]
        assert prices["BTC"].price == 60000.0
        assert prices["ETH"].sources == ("coingecko",)

    @pytest.mark.asyncio
    async def test_fallback_failure_drops_asset(self, cfg, clock):
        f = PriceFeeds(cfg, fallback=RecordingFallback(fail=True), clock=clock)
        prices = await f.get_prices(["BTC"])
        assert prices == {}

    def test_vwap_from_trades(self, feeds):
        feeds.binance._dispatch(_binance("ETHUSDT", 3000, qty="1"))
        feeds.binance._dispatch(_binance("ETHUSDT", 3100, qty="3"))
        assert feeds.vwap("ETH") == pytest.approx(3075)

    def test_malformed_messages_dropped(self, feeds):
        feeds.binance._dispatch("not json")
        feeds.binance._dispatch(json.dumps({"e": "trade", "s": "BTCUSDT"}))
        feeds.binance._dispatch(json.dumps([1, 2, 3]))
        assert feeds.book.fresh("BTC") == {}


class SilentStream(streams.ReconnectingStream):
    def __init__(self, url="wss://example.invalid"):
        super().__init__(url)
        self.messages: list[dict] = []

    def _handle_message(self, msg):
        self.messages.append(msg)


class DroppingSocket:
    """Delivers the queued frames, then drops the connection."""

    def __init__(self, frames):
        self.frames = list(frames)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.frames:
            return self.frames.pop(0)
        raise ConnectionClosed(None, None)


class TestReconnect:
    def _stop_after_sleep(self, stream):
        async def _sleep(delay):
            stream._running = False
        return AsyncMock(side_effect=_sleep)

    @pytest.mark.asyncio
    async def test_failed_connect_waits_ten_seconds(self):
        stream = SilentStream()
        stream._running = True
        sleep = self._stop_after_sleep(stream)
        with patch.object(streams.websockets, "connect", MagicMock(side_effect=OSError("refused"))), \
                patch.object(streams.asyncio, "sleep", sleep):
            await stream._run_loop()
        sleep.assert_awaited_once_with(10.0)
        assert streams.CONNECT_FAIL_DELAY_S == 10.0
        assert stream.reconnect_count == 1
        assert not stream.connected

    @pytest.mark.asyncio
    async def test_dropped_connection_waits_five_seconds(self):
        stream = SilentStream()
        stream._running = True
        sleep = self._stop_after_sleep(stream)
        socket = DroppingSocket([json.dumps({"type": "ticker"})])
        connect = MagicMock(return_value=socket)
        with patch.object(streams.websockets, "connect", connect), \
                patch.object(streams.asyncio, "sleep", sleep):
            await stream._run_loop()
        connect.assert_called_once()
        assert stream.messages == [{"type": "ticker"}]
        sleep.assert_awaited_once_with(5.0)
        assert streams.RECONNECT_DELAY_S == 5.0
        assert stream.reconnect_count == 1
        assert not stream.connected


class TestOrderBook:
    def test_bid_heavy_book_is_up(self, clock):
        book = OrderBookState(clock)
        sig = book.apply_snapshot(bids=[["100000", "20"]], asks=[["100000", "5"]])
        assert sig.bid_usd == 2_000_000
        assert sig.ask_usd == 500_000
        assert sig.imbalance == pytest.approx(4.0)
        assert sig.direction == "Up"
        assert sig.large_sweep

    def test_ask_heavy_book_is_down(self, clock):
        sig = OrderBookState(clock).apply_snapshot(bids=[["10", "1000"]], asks=[["10", "5000"]])
        assert sig.direction == "Down"
        assert sig.score() < 0

    def test_balanced_book_has_no_direction(self, clock):
        sig = OrderBookState(clock).apply_snapshot(bids=[["10", "1000"]], asks=[["10", "1200"]])
        assert sig.direction is None
        assert sig.score() == 0

    def test_depth_pull_detected(self, clock):
        book = OrderBookState(clock)
        book.apply_snapshot(
            bids=[["10", "50000"], ["9", "50000"]],
            asks=[["11", "40000"], ["12", "30000"]],
        )
        clock.now += 2
        sig = book.apply_changes([["buy", "10", "0"], ["buy", "9", "40000"]])
        assert sig.mm_pull
        assert sig.direction == "Down"

    def test_levels_bounded(self, clock):
        book = OrderBookState(clock)
        book.apply_snapshot(bids=[[str(100 - i), "1"] for i in range(80)], asks=[])
        assert len(book.bids) == 50
        book.apply_changes([["buy", str(1000 + i), "1"] for i in range(15)])
        assert len(book.bids) <= 60

    def test_feed_signal_goes_neutral_when_old(self, clock):
        feed = OrderBookFeed("wss://example.invalid", clock=clock)
        feed._dispatch(json.dumps({"type": "snapshot", "product_id": "BTC-USD",
                                   "bids": [["100000", "20"]], "asks": [["100000", "5"]]}))
        assert feed.get_signal("BTC").direction == "Up"
        clock.now += 61
        assert feed.get_signal("BTC") == NEUTRAL
        assert feed.get_signal("DOGE") == NEUTRAL


class TestLiquidations:
    def test_long_liquidations_are_bearish(self):
        sig = classify(long_usd=3_000_000, short_usd=100_000)
        assert (sig.direction, sig.strength) == ("Down", "strong")
        assert sig.score() == -2.0

    def test_short_liquidations_are_bullish(self):
        sig = classify(long_usd=0, short_usd=600_000)
        assert (sig.direction, sig.strength) == ("Up", "moderate")

    def test_extreme(self):
        assert classify(long_usd=6_000_000, short_usd=0).score() == -3.0

    def test_small_volume_has_no_direction(self):
        sig = classify(long_usd=100_000, short_usd=0)
        assert sig.direction is None
        assert sig.score() == 0.0

    def test_feed_window_expires(self, clock):
        feed = LiquidationFeed("wss://example.invalid", clock=clock)
        feed._dispatch(json.dumps({"data": {"e": "forceOrder", "o": {
            "s": "BTCUSDT", "S": "SELL", "q": "10", "ap": "60000", "T": int(clock.now * 1000),
        }}}))
        assert feed.get_signal("BTC").direction == "Down"
        clock.now += 301
        assert feed.get_signal("BTC").direction is None
