from __future__ import annotations

from datetime import datetime, timezone

import pytest
import requests

from updown import store as keys
from updown.active_trades import ActiveTrades
from updown.execution import Executor
from updown.resolver import ResultChecker, settle_pnl, winning_outcome
from tests.conftest import FROZEN_TS

SLUG = "btc-updown-15m-1772449200"
NOW = datetime.fromtimestamp(FROZEN_TS, tz=timezone.utc)


def closed_event(prices='["0.995", "0.005"]', closed=True):
    return {
        "slug": SLUG,
        "closed": closed,
        "markets": [{"closed": closed, "outcomes": '["Up", "Down"]', "outcomePrices": prices}],
    }


class EventFetch:
    def __init__(self, events=None, error=None):
        self.events = events or []
        self.error = error
        self.calls: list[dict] = []

    def __call__(self, url, params=None, timeout=None):
        self.calls.append(params)
        if self.error:
            raise self.error
        return self.events


class TestOutcome:
    def test_up_wins(self):
        assert winning_outcome(closed_event()) == "Up"

    def test_down_wins(self):
        assert winning_outcome(closed_event('["0.01", "0.99"]')) == "Down"

    def test_open_market(self):
        assert winning_outcome(closed_event(closed=False)) is None

    def test_undecided_prices(self):
        assert winning_outcome(closed_event('["0.5", "0.5"]')) is None

    def test_pnl(self):
        assert settle_pnl(10, 0.4, True) == 15.0
        assert settle_pnl(10, 0.4, False) == -10.0
        assert settle_pnl(10, 0.0, True) == 0.0


@pytest.fixture
def executor(cfg, store, kill_switch, mode_file, clock):
    return Executor(cfg, store, kill_switch, mode_file, clock=clock)


def _bet(trades, executed, direction="Up"):
    entry = {"asset": "BTC", "direction": direction, "stake": 10.0, "entryOdds": 0.5}
    if executed is not None:
        entry["executed"] = executed
    trades.record(SLUG, entry, NOW)


class TestResultChecker:
    def test_executed_win_updates_daily_pnl(self, cfg, store, executor, clock):
        store.put(keys.DAILY_STATE, {"date": "2026-03-02", "tradesPlaced": 1, "totalPnl": 0.0,
                                     "openPositions": 1, "trades": [], "killReason": None})
        trades = ActiveTrades(store)
        _bet(trades, executed=True)
        fetch = EventFetch([closed_event()])
        resolved = ResultChecker(cfg, trades, executor, fetch=fetch, clock=clock).check()

        assert [(r.slug, r.result, r.pnl) for r in resolved] == [(SLUG, "Win", 10.0)]
        assert fetch.calls == [{"slug": SLUG}]
        entry = trades.all()[SLUG]
        assert entry["result"] == "Win"
        assert entry["winner"] == "Up"
        state = executor.daily_state()
        assert state["totalPnl"] == 10.0
        assert state["openPositions"] == 0

    def test_paper_loss_leaves_daily_state(self, cfg, store, executor, clock):
        trades = ActiveTrades(store)
        _bet(trades, executed=None, direction="Down")
        resolved = ResultChecker(cfg, trades, executor, fetch=EventFetch([closed_event()]), clock=clock).check()
        assert resolved[0].result == "Loss"
        assert resolved[0].pnl == -10.0
        assert executor.daily_state()["totalPnl"] == 0.0

    def test_settled_once(self, cfg, store, clock):
        trades = ActiveTrades(store)
        _bet(trades, executed=None)
        fetch = EventFetch([closed_event()])
        checker = ResultChecker(cfg, trades, fetch=fetch, clock=clock)
        checker.check()
        assert checker.check() == []
        assert len(fetch.calls) == 1

    def test_lookup_error_leaves_bet_open(self, cfg, store, clock):
        trades = ActiveTrades(store)
        _bet(trades, executed=None)
        checker = ResultChecker(cfg, trades, fetch=EventFetch(error=requests.Timeout("slow")), clock=clock)
        assert checker.check() == []
        assert "result" not in trades.all()[SLUG]

    def test_old_settled_bets_pruned(self, cfg, store, clock):
        store.put(keys.ACTIVE_TRADES, {
            "eth-updown-15m-1772300000": {"asset": "ETH", "result": "Win", "resolvedAt": FROZEN_TS - 90_000},
            "sol-updown-15m-1772450000": {"asset": "SOL", "result": "Loss", "resolvedAt": FROZEN_TS - 600},
        })
        trades = ActiveTrades(store)
        ResultChecker(cfg, trades, fetch=EventFetch(), clock=clock).check()
        assert list(trades.all()) == ["sol-updown-15m-1772450000"]
