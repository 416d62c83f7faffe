from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from updown.history import PriceHistory
from updown.status import price_alerts, raise_price_alert, write_bot_status
from updown.trading_config import TradingConfig, parse_trading_config
from tests.conftest import FROZEN_TS, FakeClock

NOW = datetime.fromtimestamp(FROZEN_TS, tz=timezone.utc)


class TestBotStatus:
    def test_ok(self, cfg):
        doc = write_bot_status(cfg.bot_status_path, TradingConfig(), 10, trades_placed=2, now=NOW)
        on_disk = json.loads(cfg.bot_status_path.read_text())
        assert on_disk == doc
        assert doc["status"] == "ok"
        assert doc["tradesPlaced"] == 2
        assert doc["consecutiveErrors"] == 0
        assert doc["lastSuccessfulRun"] == NOW.isoformat()
        assert doc["nextRun"] == (NOW + timedelta(seconds=30)).isoformat()
        assert doc["thresholds"]["minEdge"] == 0.03
        assert doc["pathsEnabled"]["arb"] is True
        assert "alerts" not in doc

    def test_error_streak(self, cfg):
        path = cfg.bot_status_path
        tc = parse_trading_config({"paths": {"whale": False}})
        write_bot_status(path, tc, 10, now=NOW)
        first = write_bot_status(path, tc, 10, status="error", error="boom", now=NOW + timedelta(seconds=30))
        second = write_bot_status(path, tc, 10, status="error", now=NOW + timedelta(seconds=60))
        assert first["consecutiveErrors"] == 1
        assert second["consecutiveErrors"] == 2
        assert second["erroringSince"] == first["erroringSince"] == (NOW + timedelta(seconds=30)).isoformat()
        assert second["lastError"] == "Unknown error"
        assert second["lastSuccessfulRun"] == NOW.isoformat()
        assert second["pathsEnabled"]["whale"] is False

        recovered = write_bot_status(path, tc, 10, alerts=["BTC price feed DEAD, no data returned"],
                                     now=NOW + timedelta(seconds=90))
        assert recovered["consecutiveErrors"] == 0
        assert recovered["erroringSince"] is None
        assert recovered["alerts"] == ["BTC price feed DEAD, no data returned"]


class TestPriceAlerts:
    def test_dead_and_stale(self):
        history = PriceHistory({
            "BTC": ({"price": 100.0, "ts": FROZEN_TS - 1500},),
            "SOL": ({"price": 150.0, "ts": FROZEN_TS - 60},),
        })
        alerts = price_alerts({"BTC": 100.0, "ETH": None, "SOL": 150.0}, history, FROZEN_TS)
        assert alerts == [
            "ETH price feed DEAD, no data returned",
            "BTC price history STALE, last update 25 min ago",
        ]

    def test_healthy(self):
        assert price_alerts({"BTC": 1.0, "ETH": 1.0, "SOL": 1.0}, PriceHistory(), FROZEN_TS) == []

    def test_flag_at_most_hourly(self, cfg):
        clock = FakeClock()
        path = cfg.price_alert_path
        assert raise_price_alert(path, ["ETH price feed DEAD, no data returned"], clock=clock) is True
        doc = json.loads(path.read_text())
        assert doc["acknowledged"] is False
        assert doc["lastNotified"] == int(FROZEN_TS * 1000)

        clock.now += 600
        assert raise_price_alert(path, ["again"], clock=clock) is False
        clock.now += 3600
        assert raise_price_alert(path, ["again"], clock=clock) is True
        assert json.loads(path.read_text())["alerts"] == ["again"]
