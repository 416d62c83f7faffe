"""EU and US open session moves.

Data collection only. Each cycle records the first and latest price seen
inside the active session window; after the US window closes the day is
labelled followed/diverged per asset. During the US window the EU move is
exposed as a bias.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from updown import store as keys
from updown.config import ASSETS
from updown.history import PriceHistory
from updown.store import StateStore

log = logging.getLogger(__name__)

# name -> (start minute of day, end minute of day), UTC
SESSIONS = {
    "eu_open": (8 * 60, 10 * 60),
    "us_open": (14 * 60 + 30, 16 * 60 + 30),
}
RETENTION_DAYS = 30


def minute_of_day(dt: datetime) -> int:
    return dt.hour * 60 + dt.minute


def current_session(now: datetime) -> str | None:
    minute = minute_of_day(now)
    for name, (start, end) in SESSIONS.items():
        if start <= minute < end:
            return name
    return None


def session_move(samples, day: str, start: int, end: int) -> dict[str, Any] | None:
    in_window = []
    for s in samples:
        dt = datetime.fromtimestamp(s["ts"], tz=timezone.utc)
        if dt.strftime("%Y-%m-%d") == day and start <= minute_of_day(dt) < end:
            in_window.append(s["price"])
    if not in_window:
        return None
    first, last = in_window[0], in_window[-1]
    move_pct = (last - first) / first * 100 if first else 0.0
    return {
        "direction": "bullish" if move_pct >= 0 else "bearish",
        "move_pct": round(move_pct, 2),
        "start_price": first,
        "end_price": last,
    }


class SessionTracker:
    def __init__(self, store: StateStore, assets: tuple[str, ...] = ASSETS):
        self.store = store
        self.assets = assets
        self._last_session: str | None = None

    def record(self, history: PriceHistory, now: datetime) -> dict[str, Any]:
        """Update today's entry from the price history; returns it."""
        day = now.strftime("%Y-%m-%d")
        session = current_session(now)
        if session != self._last_session:
            if session == "eu_open":
                log.info("EU open started (08:00-10:00 UTC)")
            elif session == "us_open":
                log.info("US open started (14:30-16:30 UTC)")
            self._last_session = session

        def _apply(data):
            data = data or {"sessions": []}
            sessions = data.setdefault("sessions", [])
            entry = next((s for s in sessions if s.get("date") == day), None)
            if entry is None:
                entry = {"date": day}
                sessions.append(entry)
                data["sessions"] = sessions[-RETENTION_DAYS:]

            if session:
                start, end = SESSIONS[session]
                moves = entry.setdefault(session, {})
                for asset in self.assets:
                    move = session_move(history.series(asset), day, start, end)
                    if move:
                        moves[asset] = move

            us_end = SESSIONS["us_open"][1]
            if (minute_of_day(now) >= us_end and entry.get("eu_open") and entry.get("us_open")
                    and "eu_us_correlation" not in entry):
                entry["eu_us_correlation"] = {
                    asset: "followed" if entry["eu_open"][asset]["direction"] == entry["us_open"][asset]["direction"]
                    else "diverged"
                    for asset in self.assets
                    if asset in entry["eu_open"] and asset in entry["us_open"]
                }
            return data

        data = self.store.update(keys.SESSION_DATA, _apply, default={"sessions": []})
        return next(s for s in data["sessions"] if s.get("date") == day)

    def bias(self, now: datetime) -> dict[str, dict[str, Any]] | None:
        """EU-session direction per asset, only while the US session is open."""
        if current_session(now) != "us_open":
            return None
        day = now.strftime("%Y-%m-%d")
        data = self.store.get(keys.SESSION_DATA, {}) or {}
        entry = next((s for s in data.get("sessions", []) if s.get("date") == day), None)
        if not entry or not entry.get("eu_open"):
            return None
        return {
            asset: {"direction": move["direction"], "move_pct": move["move_pct"]}
            for asset, move in entry["eu_open"].items()
        }
