from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import requests

from updown.macro_events import (
    EVENT_BIAS,
    MacroCalendar,
    analyze_events,
    event_bias,
    is_relevant,
    parse_numeric,
    surprise_confidence,
)

NOW = datetime(2026, 3, 2, 13, 30, tzinfo=timezone.utc)


def release(title="CPI m/m", minutes=0, actual="", forecast="0.3%", impact="High", country="USD"):
    return {
        "title": title,
        "country": country,
        "impact": impact,
        "date": (NOW + timedelta(minutes=minutes)).isoformat(),
        "forecast": forecast,
        "previous": "0.2%",
        "actual": actual,
    }


class TestParsing:
    @pytest.mark.parametrize("raw,expected", [
        ("3.2%", 3.2), ("250K", 250.0), ("1,234.5", 1234.5), ("-0.1%", -0.1), ("", None), (None, None), ("n/a", None),
    ])
    def test_parse_numeric(self, raw, expected):
        assert parse_numeric(raw) == expected

    def test_relevance(self):
        assert is_relevant(release())
        assert not is_relevant(release(impact="Medium"))
        assert not is_relevant(release(country="EUR"))
        assert not is_relevant(release(title="Bank Holiday"))
        assert is_relevant(release(title="Fed Chair Powell Speaks", country="ALL"))

    @pytest.mark.parametrize("title,key", [
        ("Core PCE Price Index m/m", "Core PCE"),
        ("PCE Price Index y/y", "PCE"),
        ("Non-Farm Employment Change", "Non-Farm"),
    ])
    def test_event_bias_prefers_specific_key(self, title, key):
        assert event_bias(title)[0] == key

    def test_every_bias_key_reachable(self):
        for key in EVENT_BIAS:
            assert event_bias(key)[0] == key

    def test_surprise_confidence(self):
        assert surprise_confidence(25) == 0.85
        assert surprise_confidence(15) == 0.75
        assert surprise_confidence(6) == 0.65


class TestAnalyze:
    def test_imminent_release_blocks_trading(self):
        result = analyze_events([release(minutes=10)], NOW)
        assert result.avoid_trading
        assert "CPI m/m in 10 min" in result.reason

    def test_release_later_in_hour_only_listed(self):
        result = analyze_events([release(minutes=40)], NOW)
        assert not result.avoid_trading
        assert len(result.upcoming) == 1

    def test_hot_cpi_is_bearish(self):
        result = analyze_events([release(minutes=-5, actual="0.4%", forecast="0.3%")], NOW)
        sig = result.signals[0]
        assert sig.direction == "Down"
        assert sig.confidence == 0.85
        assert sig.assets == ("BTC", "ETH", "SOL")

    def test_cold_jobs_number_is_bullish(self):
        result = analyze_events([release(title="Non-Farm Employment Change", minutes=-10,
                                         actual="150K", forecast="180K")], NOW)
        assert result.signals[0].direction == "Up"
        assert result.signals[0].confidence == 0.75

    def test_small_surprise_ignored(self):
        result = analyze_events([release(minutes=-5, actual="3.1%", forecast="3.0%")], NOW)
        assert result.recent and not result.signals

    def test_old_release_ignored(self):
        result = analyze_events([release(minutes=-45, actual="0.6%")], NOW)
        assert not result.recent

    def test_rate_decision_has_no_bias(self):
        result = analyze_events([release(title="FOMC Statement", minutes=-5, actual="5.0%", forecast="4.0%")], NOW)
        assert result.signals == []


class TestCalendar:
    def test_cached_between_polls(self):
        calls = []

        def fetch(url):
            calls.append(url)
            return [release(minutes=10)]

        cal = MacroCalendar("https://calendar.test/week.json", fetch=fetch)
        assert cal.analyze(NOW).avoid_trading
        cal.analyze(NOW)
        assert calls == ["https://calendar.test/week.json"]

    def test_fetch_error_keeps_empty(self):
        def fetch(url):
            raise requests.ConnectionError("down")

        cal = MacroCalendar("https://calendar.test/week.json", fetch=fetch)
        assert cal.events() == []
        assert not cal.analyze(NOW).avoid_trading
