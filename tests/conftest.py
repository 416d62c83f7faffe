from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from updown.config import Config
from updown.kill_switch import KillSwitch, TradingModeFile
from updown.store import StateStore

# 2026-03-02 12:00:00 UTC
FROZEN_TS = 1772452800.0


class FakeClock:
    """Manual clock; ``sleep`` advances it instead of blocking."""

    def __init__(self, start: float = FROZEN_TS):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def dt(self) -> datetime:
        return datetime.fromtimestamp(self.now, tz=timezone.utc)


class FakeClobClient:
    def __init__(self):
        self.orders: list[tuple[object, object]] = []
        self.post_responses: list[object] = []
        self.order_statuses: list[dict] = []
        self.cancelled: list[str] = []
        self.midpoint: object = {"mid": "0.45"}

    def create_order(self, args):
        return args

    def post_order(self, signed, order_type):
        self.orders.append((signed, order_type))
        resp = self.post_responses.pop(0) if self.post_responses else {"orderID": "oid-1", "status": "live"}
        if isinstance(resp, Exception):
            raise resp
        return resp

    def get_order(self, order_id):
        if self.order_statuses:
            return self.order_statuses.pop(0)
        return {"status": "LIVE"}

    def cancel(self, order_id):
        self.cancelled.append(order_id)
        return {"canceled": [order_id]}

    def get_midpoint(self, token_id):
        return self.midpoint


class FakeClientFactory:
    def __init__(self, client: FakeClobClient | None):
        self.client = client
        self.calls = 0

    def get(self):
        self.calls += 1
        return self.client


def make_config(data_dir: Path, **overrides) -> Config:
    fields = dict(
        private_key="0xdeadbeef",
        funder_address="0xfunder",
        data_dir=data_dir,
        kill_switch_path=data_dir / "kill_switch.flag",
        trading_mode_path=data_dir / "trading-mode.json",
        trading_config_path=data_dir / "trading-config.json",
        state_db_path=data_dir / "state.db",
        daily_state_path=data_dir / "real-trading-state.json",
        bot_status_path=data_dir / "bot-status.json",
        price_alert_path=data_dir / "price-alert.json",
        ledger_path=data_dir / "trades.jsonl",
        whale_report_path=data_dir / "whale-analysis.md",
    )
    fields.update(overrides)
    return Config(**fields)


@pytest.fixture
def data_dir(tmp_path) -> Path:
    d = tmp_path / "data"
    d.mkdir()
    return d


@pytest.fixture
def cfg(data_dir) -> Config:
    return make_config(data_dir)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(cfg) -> StateStore:
    return StateStore(cfg.state_db_path)


@pytest.fixture
def kill_switch(cfg) -> KillSwitch:
    return KillSwitch(cfg.kill_switch_path)


@pytest.fixture
def mode_file(cfg) -> TradingModeFile:
    return TradingModeFile(cfg.trading_mode_path)


@pytest.fixture
def clob() -> FakeClobClient:
    return FakeClobClient()
