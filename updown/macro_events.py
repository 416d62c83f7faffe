"""Macro calendar: crypto-relevant economic releases.

Polls the weekly economic calendar, keeps high-impact USD/global releases
that match a crypto-relevant keyword, and derives two things each cycle:

- ``avoid_trading`` when a relevant release is at most 15 minutes away
- directional signals for releases published in the last 30 minutes whose
  actual value surprised the forecast by more than 5%
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

import requests

from updown.http_session import get_json

log = logging.getLogger(__name__)

RELEVANT_CURRENCIES = ("USD", "ALL")
RELEVANT_KEYWORDS = (
    "CPI", "PPI", "NFP", "Non-Farm", "FOMC", "Fed", "Interest Rate",
    "GDP", "Retail Sales", "Unemployment", "PCE", "Core PCE",
    "Consumer Confidence", "ISM", "PMI", "Jobless Claims",
    "Treasury", "Inflation", "Powell",
)


@dataclass(frozen=True)
class EventBias:
    hot: str | None     # direction when actual > forecast
    cold: str | None    # direction when actual < forecast
    volatility_min: int


# Hotter inflation/jobs = hawkish = bearish crypto; stronger growth = risk-on.
# Order matters: first key contained in the title wins.
EVENT_BIAS: dict[str, EventBias] = {
    "CPI": EventBias("Down", "Up", 30),
    "PPI": EventBias("Down", "Up", 20),
    "Core PCE": EventBias("Down", "Up", 30),
    "PCE": EventBias("Down", "Up", 30),
    "NFP": EventBias("Down", "Up", 45),
    "Non-Farm": EventBias("Down", "Up", 45),
    "Unemployment": EventBias("Up", "Down", 30),
    "Jobless Claims": EventBias("Up", "Down", 15),
    "FOMC": EventBias(None, None, 60),
    "Fed": EventBias(None, None, 60),
    "Interest Rate": EventBias("Down", "Up", 45),
    "GDP": EventBias("Up", "Down", 20),
    "Retail Sales": EventBias("Up", "Down", 15),
    "ISM": EventBias("Up", "Down", 15),
    "PMI": EventBias("Up", "Down", 15),
    "Consumer Confidence": EventBias("Up", "Down", 15),
}

UPCOMING_WINDOW_MIN = 60
AVOID_BEFORE_MIN = 15
RECENT_WINDOW_MIN = 30
MIN_SURPRISE_PCT = 5.0
SIGNAL_ASSETS = ("BTC", "ETH", "SOL")
CALENDAR_CACHE_S = 600

_NUMERIC_STRIP = re.compile(r"[%KMB,]")


@dataclass(frozen=True)
class MacroEvent:
    title: str
    time: datetime
    minutes_away: float
    forecast: float | None
    previous: float | None
    actual: float | None
    event_type: str
    volatility_min: int
    raw_forecast: str = ""
    raw_actual: str = ""


@dataclass(frozen=True)
class MacroSignal:
    title: str
    direction: str
    confidence: float
    reason: str
    surprise_pct: float
    valid_for_min: int
    assets: tuple[str, ...] = SIGNAL_ASSETS


@dataclass
class MacroAnalysis:
    upcoming: list[MacroEvent] = field(default_factory=list)
    recent: list[MacroEvent] = field(default_factory=list)
    signals: list[MacroSignal] = field(default_factory=list)
    avoid_trading: bool = False
    reason: str = ""


def parse_numeric(value: Any) -> float | None:
    """'3.2%' -> 3.2, '250K' -> 250.0, '' -> None."""
    if value is None:
        return None
    s = _NUMERIC_STRIP.sub("", str(value)).strip()
    if not s:
        return None
    try:
        return float(s)
    except ValueError:
        return None


def is_relevant(event: dict[str, Any]) -> bool:
    if event.get("impact") != "High":
        return False
    if event.get("country") not in RELEVANT_CURRENCIES:
        return False
    title = (event.get("title") or "").lower()
    return any(kw.lower() in title for kw in RELEVANT_KEYWORDS)


def event_bias(title: str) -> tuple[str, EventBias] | None:
    t = title.lower()
    for key, bias in EVENT_BIAS.items():
        if key.lower() in t:
            return key, bias
    return None


def surprise_confidence(surprise_pct: float) -> float:
    if surprise_pct > 20:
        return 0.85
    if surprise_pct > 10:
        return 0.75
    return 0.65


def analyze_events(events: list[dict[str, Any]], now: datetime) -> MacroAnalysis:
    result = MacroAnalysis()
    for raw in events:
        if not is_relevant(raw):
            continue
        try:
            when = datetime.fromisoformat(str(raw["date"]).replace("Z", "+00:00"))
        except (KeyError, ValueError):
            continue
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        diff_min = (when - now).total_seconds() / 60.0
        typed = event_bias(raw["title"])
        ev = MacroEvent(
            title=raw["title"],
            time=when,
            minutes_away=round(diff_min),
            forecast=parse_numeric(raw.get("forecast")),
            previous=parse_numeric(raw.get("previous")),
            actual=parse_numeric(raw.get("actual")),
            event_type=typed[0] if typed else "unknown",
            volatility_min=typed[1].volatility_min if typed else 20,
            raw_forecast=str(raw.get("forecast") or ""),
            raw_actual=str(raw.get("actual") or ""),
        )

        if 0 < diff_min <= UPCOMING_WINDOW_MIN:
            result.upcoming.append(ev)
            if diff_min <= AVOID_BEFORE_MIN:
                result.avoid_trading = True
                result.reason = f"{ev.title} in {round(diff_min)} min, avoid trading"

        if -RECENT_WINDOW_MIN <= diff_min <= 0 and ev.actual is not None and typed:
            result.recent.append(ev)
            bias = typed[1]
            if ev.forecast is None or bias.hot is None:
                continue
            surprise = ev.actual - ev.forecast
            surprise_pct = abs(surprise / ev.forecast) * 100 if ev.forecast != 0 else 0.0
            if surprise_pct <= MIN_SURPRISE_PCT:
                continue
            hot = surprise > 0
            direction = bias.hot if hot else bias.cold
            if not direction:
                continue
            result.signals.append(MacroSignal(
                title=ev.title,
                direction=direction,
                confidence=surprise_confidence(surprise_pct),
                reason=(
                    f"{ev.title}: actual {ev.raw_actual} vs forecast {ev.raw_forecast} "
                    f"({'hotter' if hot else 'cooler'} than expected)"
                ),
                surprise_pct=round(surprise_pct, 1),
                valid_for_min=bias.volatility_min,
            ))
    return result


class MacroCalendar:
    """Cached calendar fetcher."""

    def __init__(self, url: str, fetch: Callable[[str], list] | None = None):
        self.url = url
        self._fetch = fetch or get_json
        self._events: list[dict[str, Any]] = []
        self._fetched_at = 0.0

    def events(self) -> list[dict[str, Any]]:
        now = time.time()
        if self._events and now - self._fetched_at < CALENDAR_CACHE_S:
            return self._events
        try:
            data = self._fetch(self.url)
        except (requests.RequestException, ValueError) as exc:
            log.warning("Economic calendar fetch failed: %s", exc)
            return self._events
        if isinstance(data, list):
            self._events = data
            self._fetched_at = now
        return self._events

    def analyze(self, now: datetime | None = None) -> MacroAnalysis:
        return analyze_events(self.events(), now or datetime.now(timezone.utc))
