from __future__ import annotations

import pytest
import requests

from updown.whale_tracker import (
    WhaleTracker,
    WhaleTradeDB,
    analyze_trades,
    cross_reference,
    dedupe_key,
    is_crypto_updown,
    parse_window,
    process_trade,
    window_signal,
)
from tests.conftest import FROZEN_TS, FakeClock

SLUG = "btc-updown-15m-1772452800"


def fill(tx="0xa", outcome="Up", usdc=100.0, price=0.5, ts=FROZEN_TS + 120, slug=SLUG,
         title="Bitcoin Up or Down - March 2, 7:00AM-7:15AM ET", kind="TRADE"):
    return {
        "type": kind,
        "timestamp": int(ts),
        "title": title,
        "slug": slug,
        "outcome": outcome,
        "size": round(usdc / price, 2),
        "usdcSize": usdc,
        "price": price,
        "side": "BUY",
        "transactionHash": tx,
    }


class PagedFetch:
    def __init__(self, pages):
        self.pages = pages
        self.offsets: list[int] = []

    def __call__(self, url, params=None, timeout=None):
        offset = params["offset"]
        self.offsets.append(offset)
        page = self.pages.get(offset, [])
        if isinstance(page, Exception):
            raise page
        return page


@pytest.fixture
def db(tmp_path):
    return WhaleTradeDB(tmp_path / "whale.db")


def tracker_for(db, pages, clock=None):
    clock = clock or FakeClock(FROZEN_TS + 600)
    fetch = PagedFetch(pages)
    tracker = WhaleTracker("0xWHALE", db, "https://data-api.example", fetch=fetch,
                           sleep=clock.sleep, clock=clock)
    return tracker, fetch, clock


class TestClassification:
    def test_crypto_updown(self):
        assert is_crypto_updown(fill())
        assert not is_crypto_updown(fill(title="Will it rain in Paris?", slug="rain-paris"))

    def test_window_from_slug(self):
        w = parse_window(fill())
        assert w["windowDurationMin"] == 15
        assert w["minutesIntoWindow"] == 2.0
        assert w["minutesRemaining"] == 13.0
        assert w["windowStart"].startswith("2026-03-02T12:00:00")

    def test_duration_from_title_range(self):
        raw = fill(slug="bitcoin-up-or-down-march-2-1772452800",
                   title="Bitcoin Up or Down - March 2, 7:00AM-7:05AM ET")
        assert parse_window(raw)["windowDurationMin"] == 5

    def test_process_trade(self):
        t = process_trade(fill(outcome="Down", usdc=42.0, price=0.42))
        assert t["asset"] == "BTC"
        assert t["direction"] == "Down"
        assert t["usdcSize"] == 42.0
        assert t["marketSlug"] == SLUG
        assert dedupe_key(t) == "0xa|0.42|100.0"


class TestStorage:
    def test_add_dedupes(self, db):
        trades = [process_trade(fill("0x1")), process_trade(fill("0x2", ts=FROZEN_TS + 200))]
        assert db.add(trades) == 2
        assert db.add(trades) == 0
        assert db.last_timestamp() == int(FROZEN_TS + 200)
        assert [t["transactionHash"] for t in db.for_slug(SLUG)] == ["0x1", "0x2"]

    def test_empty_db(self, db):
        assert db.last_timestamp() == 0
        assert db.all() == []


class TestWindowSignal:
    def test_empty(self):
        assert window_signal([]) is None

    def test_flow(self):
        trades = [
            process_trade(fill("0x1", "Up", usdc=300.0, price=0.55)),
            process_trade(fill("0x2", "Down", usdc=100.0, price=0.40)),
        ]
        sig = window_signal(trades)
        assert sig.active
        assert sig.flow_imbalance == 0.5
        assert sig.dominant_side == "Up"
        assert sig.trade_count == 2
        assert sig.confidence == pytest.approx(0.1)
        assert sig.spread_quality == "normal"
        assert sig.agrees_with("Up")
        assert not sig.agrees_with("Down")

    def test_balanced_flow_is_neutral(self):
        trades = [
            process_trade(fill("0x1", "Up", usdc=100.0)),
            process_trade(fill("0x2", "Down", usdc=95.0)),
        ]
        assert window_signal(trades).dominant_side == "neutral"


class TestTracker:
    def test_check_new_trades_stops_at_known(self, db):
        tracker, fetch, _ = tracker_for(db, {0: [fill("0x1"), fill("0x2", kind="REDEEM")]})
        fresh = tracker.check_new_trades()
        assert [t["transactionHash"] for t in fresh] == ["0x1"]

        assert tracker.check_new_trades() == []
        assert len(db.all()) == 1

    def test_fetch_error_is_tolerated(self, db):
        tracker, _, _ = tracker_for(db, {0: requests.ConnectionError("down")})
        assert tracker.check_new_trades() == []

    def test_backfill_pages(self, db):
        first = [fill(f"0x{i}", ts=FROZEN_TS - i) for i in range(99)]
        first.append(fill("0xrain", title="Rain?", slug="rain"))
        tracker, fetch, clock = tracker_for(db, {0: first, 100: [fill("0xlast", ts=FROZEN_TS - 500)]})
        assert tracker.backfill() == 100
        assert fetch.offsets == [0, 100]
        assert clock.sleeps == [0.3]

    def test_signal_and_activity(self, db):
        db.add([
            process_trade(fill("0x1", "Down", usdc=250.0)),
            process_trade(fill("0x2", "Down", usdc=50.0, ts=FROZEN_TS + 180)),
        ])
        tracker, _, _ = tracker_for(db, {})
        assert tracker.signal(SLUG).dominant_side == "Down"
        assert tracker.signal("") is None

        act = tracker.activity("BTC", 15)
        assert act.active
        assert act.trade_count == 2
        assert act.total_usdc == 300.0
        assert act.dominant_side == "Down"
        assert not tracker.activity("ETH", 15).active


class TestReports:
    def test_analyze_empty(self):
        assert analyze_trades([]) == "No trades to analyze."

    def test_analyze(self):
        trades = [process_trade(fill("0x1", usdc=100.0)), process_trade(fill("0x2", "Down", usdc=300.0))]
        report = analyze_trades(trades, "0xwhalewallet")
        assert "# Whale Analysis (0xwhalew...)" in report
        assert "- **BTC**: 2 trades ($400.00 USDC)" in report
        assert "- 15 min: 2 trades (100.0%)" in report
        assert "- BUY: 2 (100.0%)" in report

    def test_cross_reference(self):
        whale = [process_trade(fill("0x1", "Up", usdc=200.0))]
        ours = {SLUG: {
            "asset": "BTC", "direction": "Up", "entryOdds": 0.52,
            "timestamp": "2026-03-02T12:05:00+00:00", "windowStart": "2026-03-02T12:00:00+00:00",
            "result": "win",
        }}
        report = cross_reference(whale, ours)
        assert "**Overlapping windows: 1**" in report
        assert "- Same direction: 1/1 (100.0%)" in report
        assert "- When agreed: 1/1 wins (100.0%)" in report
        assert "- Whale trades first: 1/1 (100.0%)" in report
        assert "**Confirming signal**" in report

    def test_cross_reference_no_overlap(self):
        report = cross_reference([], {"eth-updown-5m-1": {"direction": "Up"}})
        assert "No overlapping windows found." in report
