from __future__ import annotations

import json

import pytest

from updown.kill_switch import KillSwitch, TradingModeFile
from updown.store import DAILY_STATE, StateStore


class TestStateStore:
    def test_get_default(self, store):
        assert store.get("missing", {"a": 1}) == {"a": 1}

    def test_put_get(self, store):
        store.put("k", {"n": 1, "items": [1, 2]})
        assert store.get("k") == {"n": 1, "items": [1, 2]}

    def test_update(self, store):
        def bump(state):
            state["n"] += 1
            return state

        assert store.update(DAILY_STATE, bump, default={"n": 0}) == {"n": 1}
        assert store.update(DAILY_STATE, bump, default={"n": 0}) == {"n": 2}

    def test_failed_update_writes_nothing(self, store):
        store.put("k", {"n": 1})

        def boom(state):
            raise RuntimeError("nope")

        with pytest.raises(RuntimeError):
            store.update("k", boom)
        assert store.get("k") == {"n": 1}

    def test_survives_reopen(self, cfg, store):
        store.put("k", [1, 2, 3])
        assert StateStore(cfg.state_db_path).get("k") == [1, 2, 3]


class TestKillSwitch:
    def test_lifecycle(self, kill_switch):
        assert not kill_switch.is_active()
        assert kill_switch.info() is None

        kill_switch.activate("Daily loss limit")
        assert kill_switch.is_active()
        assert kill_switch.info().reason == "Daily loss limit"

        assert kill_switch.clear() is True
        assert kill_switch.clear() is False
        assert not kill_switch.is_active()

    def test_unreadable_marker_still_active(self, kill_switch):
        kill_switch.path.write_text("garbage")
        assert kill_switch.is_active()
        assert kill_switch.info().reason == "unknown"


class TestTradingMode:
    def test_default_paper(self, mode_file):
        assert mode_file.read() == "paper"

    def test_set(self, mode_file):
        mode_file.set("real", updated_by="test")
        assert mode_file.read() == "real"
        assert json.loads(mode_file.path.read_text())["updatedBy"] == "test"

    def test_invalid(self, mode_file):
        with pytest.raises(ValueError):
            mode_file.set("yolo")
        assert mode_file.read() == "paper"

    def test_unknown_value_on_disk(self, mode_file):
        mode_file.path.write_text(json.dumps({"mode": "turbo"}))
        assert mode_file.read() == "paper"
