from __future__ import annotations

import json
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

import requests

from updown.config import Config
from updown.http_session import get_json

log = logging.getLogger(__name__)

# Slug prefix -> asset
SLUG_ASSETS = {"btc": "BTC", "eth": "ETH", "sol": "SOL", "xrp": "XRP"}
# Window length in seconds, keyed by slug tag
WINDOWS = {"5m": 300, "15m": 900}

_ASSET_RE = re.compile(r"^(btc|eth|sol|xrp)", re.IGNORECASE)
_CACHE_TTL = 20
# One lookup per candidate slug, all in flight at once
_LOOKUP_WORKERS = 16


@dataclass
class Market:
    slug: str
    asset: str
    condition_id: str | None
    token_ids: tuple[str, ...]   # [0]=Up, [1]=Down
    up_odds: float
    down_odds: float
    volume: float
    liquidity: float
    start: datetime | None
    end: datetime | None

    def odds_for(self, direction: str) -> float:
        return self.up_odds if direction == "Up" else self.down_odds

    def token_for(self, direction: str) -> str | None:
        idx = 0 if direction == "Up" else 1
        return self.token_ids[idx] if len(self.token_ids) > idx else None

    def minutes_elapsed(self, now: datetime) -> float | None:
        if self.start is None:
            return None
        return (now - self.start).total_seconds() / 60.0

    def minutes_remaining(self, now: datetime) -> float | None:
        if self.end is None:
            return None
        return (self.end - now).total_seconds() / 60.0


def _parse_list(value: Any) -> list:
    """Gamma returns some list fields as JSON-encoded strings."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
            return parsed if isinstance(parsed, list) else []
        except ValueError:
            return [p.strip() for p in value.split(",") if p.strip()]
    return []


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_market(event: dict[str, Any], excluded: tuple[str, ...] = ()) -> Market | None:
    """Turn a Gamma event into a ``Market``; None for unusable or excluded events."""
    markets = event.get("markets") or []
    if not markets:
        return None
    m = markets[0]
    slug = event.get("slug") or m.get("slug") or ""
    match = _ASSET_RE.match(slug)
    if not match:
        return None
    asset = match.group(1).upper()
    if asset in excluded:
        return None

    prices = _parse_list(m.get("outcomePrices"))
    token_ids = tuple(str(t) for t in _parse_list(m.get("clobTokenIds")))
    return Market(
        slug=slug,
        asset=asset,
        condition_id=m.get("conditionId"),
        token_ids=token_ids,
        up_odds=_to_float(prices[0]) if len(prices) > 0 else 0.0,
        down_odds=_to_float(prices[1]) if len(prices) > 1 else 0.0,
        volume=_to_float(event.get("volume")),
        liquidity=_to_float(event.get("liquidity")),
        start=_parse_time(event.get("startTime") or m.get("eventStartTime")),
        end=_parse_time(m.get("endDate") or event.get("endDate")),
    )


def candidate_slugs(now_ts: float, assets: tuple[str, ...] = tuple(SLUG_ASSETS)) -> list[str]:
    """Slugs for the current and next window of every asset and window length."""
    slugs = []
    for tag, length in WINDOWS.items():
        current = int(now_ts // length) * length
        for start in (current, current + length):
            for short in assets:
                slugs.append(f"{short}-updown-{tag}-{start}")
    return slugs


class MarketDiscovery:
    """Finds live up/down windows through Gamma slug lookups."""

    def __init__(self, cfg: Config, fetch: Callable[..., Any] | None = None,
                 clock: Callable[[], float] = time.time):
        self.cfg = cfg
        self._fetch = fetch or get_json
        self._clock = clock
        self._cache: list[dict[str, Any]] = []
        self._cached_at = 0.0

    def _lookup(self, slug: str) -> list[dict[str, Any]]:
        try:
            return self._fetch(f"{self.cfg.gamma_host}/events", params={"slug": slug})
        except (requests.RequestException, ValueError) as exc:
            log.debug("Gamma lookup failed for %s: %s", slug, exc)
            return []

    def _events(self) -> list[dict[str, Any]]:
        now = self._clock()
        if self._cache and now - self._cached_at < _CACHE_TTL:
            return self._cache
        slugs = candidate_slugs(now)
        with ThreadPoolExecutor(max_workers=min(_LOOKUP_WORKERS, len(slugs)),
                                thread_name_prefix="gamma") as pool:
            results = list(pool.map(self._lookup, slugs))
        events = []
        for data in results:
            for ev in data or []:
                if ev.get("closed"):
                    continue
                events.append(ev)
        if events:
            log.info("Gamma discovery: %d live windows", len(events))
        self._cache = events
        self._cached_at = now
        return events

    def fetch_markets(self, excluded: tuple[str, ...] = ()) -> list[Market]:
        """Live markets, windows already in progress first."""
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        out: list[Market] = []
        seen: set[str] = set()
        for ev in self._events():
            market = parse_market(ev, excluded)
            if market is None or market.slug in seen:
                continue
            if market.end is not None and market.end <= now:
                continue
            seen.add(market.slug)
            out.append(market)
        out.sort(key=lambda mk: (mk.start is None or mk.start > now, mk.slug))
        return out
