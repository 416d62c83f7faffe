"""Health files for external monitoring.

``bot-status.json`` is rewritten every cycle. ``price-alert.json`` is the
operator flag for dead or stale price feeds and is raised at most once an
hour.
"""
from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Mapping

from updown.history import PriceHistory
from updown.trading_config import TradingConfig

log = logging.getLogger(__name__)

NEXT_RUN_S = 30
STALE_HISTORY_S = 20 * 60
ALERT_INTERVAL_S = 3600
MONITORED_ASSETS = ("BTC", "ETH", "SOL")

_THRESHOLD_KEYS = ("minMarketOdds", "minEdge", "path1Confidence", "path2Confidence", "path3Confidence")


def _read_json(path: Path) -> dict[str, Any]:
    try:
        return json.loads(path.read_text())
    except (OSError, ValueError):
        return {}


def _write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, indent=2))
    tmp.replace(path)


def write_bot_status(path: Path, cfg: TradingConfig, base_stake: float, trades_placed: int = 0,
                     status: str = "ok", alerts: list[str] | None = None,
                     error: str | None = None, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    prev = _read_json(path)
    erroring = status == "error"

    doc: dict[str, Any] = {
        "lastRun": now.isoformat(),
        "status": status,
        "tradesPlaced": trades_placed,
        "consecutiveErrors": prev.get("consecutiveErrors", 0) + 1 if erroring else 0,
        "lastSuccessfulRun": now.isoformat() if status == "ok" else prev.get("lastSuccessfulRun"),
        "erroringSince": (prev.get("erroringSince") or now.isoformat()) if erroring else None,
        "lastError": (error or "Unknown error") if erroring else None,
        "thresholds": {k: cfg.param(k) for k in _THRESHOLD_KEYS},
        "stakeTiers": cfg.describe_stake_tiers(base_stake),
        "pathsEnabled": dict(cfg.paths),
        "nextRun": (now + timedelta(seconds=NEXT_RUN_S)).isoformat(),
    }
    if alerts:
        doc["alerts"] = list(alerts)
    try:
        _write_json(path, doc)
    except OSError:
        log.exception("Failed to write bot status to %s", path)
    return doc


def price_alerts(prices: Mapping[str, Any], history: PriceHistory, now_ts: float,
                 assets: tuple[str, ...] = MONITORED_ASSETS) -> list[str]:
    """Dead feeds (no price this cycle) and history that stopped advancing."""
    alerts = [f"{a} price feed DEAD, no data returned" for a in assets if not prices.get(a)]
    for asset in assets:
        last = history.last_timestamp(asset)
        if last is not None and now_ts - last > STALE_HISTORY_S:
            alerts.append(f"{asset} price history STALE, last update {round((now_ts - last) / 60)} min ago")
    return alerts


def raise_price_alert(path: Path, alerts: list[str], clock=time.time) -> bool:
    """Write the alert flag unless one was raised within the last hour."""
    existing = _read_json(path)
    now_ms = clock() * 1000
    last = existing.get("lastNotified")
    if last and now_ms - float(last) <= ALERT_INTERVAL_S * 1000:
        return False
    try:
        _write_json(path, {
            "alerts": alerts,
            "timestamp": datetime.fromtimestamp(clock(), tz=timezone.utc).isoformat(),
            "lastNotified": int(now_ms),
            "acknowledged": False,
        })
    except OSError:
        log.exception("Alert file write failed")
        return False
    log.warning("Price alert flag set: %s", "; ".join(alerts))
    return True
