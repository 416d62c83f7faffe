"""Smart-money wallet tracker.

Follows one large up/down trader through the public activity feed, stores
each crypto up/down fill once, and turns the fills for a market window into
a USD-weighted flow signal the decision gate can consult.

Architecture:
  WhaleTracker (orchestrator)
    ├── WhaleTradeDB   : SQLite persistence, de-duplicated by (tx, price, size)
    ├── signal()       : per-window flow imbalance / dominant side
    ├── activity()     : recent per-asset flow
    └── analyze() / cross_reference(): offline markdown reports
"""
from __future__ import annotations

import logging
import re
import sqlite3
import statistics
import time
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Callable

import requests

from updown.http_session import get_json

log = logging.getLogger(__name__)

PAGE_SIZE = 100
MAX_API_OFFSET = 3000
PAGE_DELAY_S = 0.2
BACKFILL_PAGE_DELAY_S = 0.3
DOMINANT_IMBALANCE = 0.15
FULL_CONFIDENCE_TRADES = 20
DEFAULT_WINDOW_MIN = 15

ASSET_NAMES = {"BTC": "bitcoin", "ETH": "ethereum", "SOL": "solana", "XRP": "xrp"}

_UPDOWN_RE = re.compile(r"up.?or.?down|updown", re.IGNORECASE)
_EPOCH_RE = re.compile(r"(\d{10,})$")
_DURATION_RE = re.compile(r"(\d+)m-\d{10}")
_TITLE_RANGE_RE = re.compile(
    r"(\d{1,2}(?::\d{2})?(?:AM|PM))\s*-\s*(\d{1,2}(?::\d{2})?(?:AM|PM))", re.IGNORECASE,
)
_CLOCK_RE = re.compile(r"(\d{1,2})(?::(\d{2}))?(AM|PM)", re.IGNORECASE)


@dataclass(frozen=True)
class WhaleSignal:
    active: bool
    flow_imbalance: float           # -1 all Down .. +1 all Up, by USD
    dominant_side: str              # "Up" | "Down" | "neutral"
    trade_count: int
    confidence: float               # saturates at 20 trades
    up_usdc: float = 0.0
    down_usdc: float = 0.0
    implied_fair: float | None = None
    spread_quality: str = "unknown"

    def agrees_with(self, direction: str, threshold: float = DOMINANT_IMBALANCE) -> bool:
        if direction == "Up":
            return self.flow_imbalance > threshold
        return self.flow_imbalance < -threshold


@dataclass(frozen=True)
class WhaleActivity:
    active: bool
    trade_count: int = 0
    total_usdc: float = 0.0
    flow_imbalance: float = 0.0
    dominant_side: str = "neutral"


# ── Classification ──

def detect_asset(raw: dict[str, Any]) -> str | None:
    text = f"{raw.get('title') or ''} {raw.get('slug') or ''}".lower()
    for asset, name in ASSET_NAMES.items():
        if asset.lower() in text or name in text:
            return asset
    return None


def is_crypto_updown(raw: dict[str, Any]) -> bool:
    text = f"{raw.get('title') or ''} {raw.get('slug') or ''}"
    return bool(_UPDOWN_RE.search(text)) and detect_asset(raw) is not None


def _clock_minutes(text: str) -> int:
    m = _CLOCK_RE.match(text)
    if not m:
        return 0
    hour = int(m.group(1))
    minute = int(m.group(2) or 0)
    ampm = m.group(3).upper()
    if ampm == "PM" and hour != 12:
        hour += 12
    if ampm == "AM" and hour == 12:
        hour = 0
    return hour * 60 + minute


def parse_window(raw: dict[str, Any]) -> dict[str, Any]:
    """Window start/end and entry timing for one fill, from its slug or title."""
    slug = raw.get("slug") or raw.get("eventSlug") or ""
    title = raw.get("title") or ""

    start = None
    m = _EPOCH_RE.search(slug)
    if m:
        start = int(m.group(1))

    duration_min = None
    m = _DURATION_RE.search(slug)
    if m:
        duration_min = int(m.group(1))
    else:
        r = _TITLE_RANGE_RE.search(title)
        if r:
            begin, end = _clock_minutes(r.group(1)), _clock_minutes(r.group(2))
            if end > begin:
                duration_min = end - begin
        duration_min = duration_min or DEFAULT_WINDOW_MIN

    ts = int(raw.get("timestamp") or 0)
    end_ts = start + duration_min * 60 if start is not None else None
    return {
        "windowStart": _iso(start) if start is not None else None,
        "windowEnd": _iso(end_ts) if end_ts is not None else None,
        "windowDurationMin": duration_min,
        "minutesIntoWindow": round((ts - start) / 60, 2) if start is not None else None,
        "minutesRemaining": round((end_ts - ts) / 60, 2) if end_ts is not None else None,
    }


def _iso(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat()


def process_trade(raw: dict[str, Any]) -> dict[str, Any]:
    direction = raw.get("outcome") or ("Up" if raw.get("outcomeIndex") == 0 else "Down")
    ts = int(raw.get("timestamp") or 0)
    trade = {
        "timestamp": _iso(ts),
        "epochTimestamp": ts,
        "asset": detect_asset(raw),
        "direction": direction,
        "size": float(raw.get("size") or 0),
        "usdcSize": float(raw.get("usdcSize") or 0),
        "price": float(raw.get("price") or 0),
        "side": raw.get("side"),
        "marketSlug": raw.get("slug") or raw.get("eventSlug"),
        "transactionHash": raw.get("transactionHash") or "",
    }
    trade.update(parse_window(raw))
    return trade


def dedupe_key(trade: dict[str, Any]) -> str:
    return f"{trade['transactionHash']}|{trade['price']}|{trade['size']}"


# ── Persistence ──

_COLUMNS = (
    "dedupe_key", "epoch", "timestamp", "asset", "direction", "size", "usdc_size",
    "price", "side", "market_slug", "tx_hash", "window_start", "window_end",
    "window_duration_min", "minutes_into_window", "minutes_remaining",
)


class WhaleTradeDB:
    """Append-only store of observed fills."""

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._init_schema()

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._lock:
            conn = self._conn()
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS whale_trades (
                    dedupe_key TEXT PRIMARY KEY,
                    epoch INTEGER,
                    timestamp TEXT,
                    asset TEXT,
                    direction TEXT,
                    size REAL,
                    usdc_size REAL,
                    price REAL,
                    side TEXT,
                    market_slug TEXT,
                    tx_hash TEXT,
                    window_start TEXT,
                    window_end TEXT,
                    window_duration_min REAL,
                    minutes_into_window REAL,
                    minutes_remaining REAL
                );
                CREATE INDEX IF NOT EXISTS idx_whale_slug ON whale_trades(market_slug);
                CREATE INDEX IF NOT EXISTS idx_whale_asset ON whale_trades(asset, epoch);
            """)
            conn.commit()
            conn.close()

    def add(self, trades: list[dict[str, Any]]) -> int:
        """Insert fills not seen before; returns how many were new."""
        rows = [
            (
                dedupe_key(t), t["epochTimestamp"], t["timestamp"], t["asset"], t["direction"],
                t["size"], t["usdcSize"], t["price"], t["side"], t["marketSlug"],
                t["transactionHash"], t["windowStart"], t["windowEnd"], t["windowDurationMin"],
                t["minutesIntoWindow"], t["minutesRemaining"],
            )
            for t in trades
        ]
        with self._lock:
            conn = self._conn()
            before = conn.total_changes
            conn.executemany(
                f"INSERT OR IGNORE INTO whale_trades ({', '.join(_COLUMNS)}) "
                f"VALUES ({', '.join('?' for _ in _COLUMNS)})",
                rows,
            )
            conn.commit()
            added = conn.total_changes - before
            conn.close()
        return added

    def last_timestamp(self) -> int:
        with self._lock:
            conn = self._conn()
            row = conn.execute("SELECT MAX(epoch) AS ts FROM whale_trades").fetchone()
            conn.close()
        return int(row["ts"] or 0)

    def _query(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        with self._lock:
            conn = self._conn()
            rows = conn.execute(sql, params).fetchall()
            conn.close()
        return [_row_to_trade(r) for r in rows]

    def for_slug(self, slug: str) -> list[dict[str, Any]]:
        return self._query("SELECT * FROM whale_trades WHERE market_slug = ? ORDER BY epoch", (slug,))

    def for_asset_since(self, asset: str, epoch: float) -> list[dict[str, Any]]:
        return self._query(
            "SELECT * FROM whale_trades WHERE asset = ? AND epoch > ? ORDER BY epoch", (asset, epoch),
        )

    def all(self) -> list[dict[str, Any]]:
        return self._query("SELECT * FROM whale_trades ORDER BY epoch")


def _row_to_trade(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "timestamp": row["timestamp"],
        "epochTimestamp": row["epoch"],
        "asset": row["asset"],
        "direction": row["direction"],
        "size": row["size"],
        "usdcSize": row["usdc_size"],
        "price": row["price"],
        "side": row["side"],
        "marketSlug": row["market_slug"],
        "transactionHash": row["tx_hash"],
        "windowStart": row["window_start"],
        "windowEnd": row["window_end"],
        "windowDurationMin": row["window_duration_min"],
        "minutesIntoWindow": row["minutes_into_window"],
        "minutesRemaining": row["minutes_remaining"],
    }


# ── Aggregation ──

def _flow(trades: list[dict[str, Any]]) -> tuple[float, float, float]:
    up = sum(t["usdcSize"] or 0 for t in trades if t["direction"] == "Up")
    down = sum(t["usdcSize"] or 0 for t in trades if t["direction"] == "Down")
    total = up + down
    imbalance = (up - down) / total if total > 0 else 0.0
    return up, down, imbalance


def _dominant(imbalance: float) -> str:
    if abs(imbalance) > DOMINANT_IMBALANCE:
        return "Up" if imbalance > 0 else "Down"
    return "neutral"


def window_signal(trades: list[dict[str, Any]]) -> WhaleSignal | None:
    """Flow signal for the fills of one market window; None if there is no USD flow."""
    if not trades:
        return None
    up, down, imbalance = _flow(trades)
    if up + down == 0:
        return None

    def _weighted_price(direction: str, usdc: float) -> float | None:
        side = [t for t in trades if t["direction"] == direction]
        if not side or usdc <= 0:
            return None
        return sum(t["price"] * (t["usdcSize"] or 0) for t in side) / usdc

    up_price = _weighted_price("Up", up)
    down_price = _weighted_price("Down", down)
    spread = "unknown"
    if up_price and down_price:
        total_cost = up_price + down_price
        if total_cost >= 0.97:
            spread = "tight"
        elif total_cost >= 0.90:
            spread = "normal"
        else:
            spread = "wide"

    return WhaleSignal(
        active=True,
        flow_imbalance=round(imbalance, 3),
        dominant_side=_dominant(imbalance),
        trade_count=len(trades),
        confidence=min(len(trades) / FULL_CONFIDENCE_TRADES, 1.0),
        up_usdc=round(up, 2),
        down_usdc=round(down, 2),
        implied_fair=up_price,
        spread_quality=spread,
    )


class WhaleTracker:
    def __init__(self, wallet: str, db: WhaleTradeDB, data_api: str,
                 fetch: Callable[..., Any] | None = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.time):
        self.wallet = wallet.lower()
        self.db = db
        self.data_api = data_api.rstrip("/")
        self._fetch = fetch or get_json
        self._sleep = sleep
        self._clock = clock

    def _page(self, offset: int) -> list[dict[str, Any]]:
        data = self._fetch(
            f"{self.data_api}/activity",
            params={"user": self.wallet, "limit": PAGE_SIZE, "offset": offset},
        )
        return data if isinstance(data, list) else []

    def check_new_trades(self) -> list[dict[str, Any]]:
        """Fetch fills newer than the last stored one. Returns the new fills."""
        last_ts = self.db.last_timestamp()
        fresh: list[dict[str, Any]] = []
        offset = 0
        done = False
        while not done and offset < MAX_API_OFFSET:
            try:
                batch = self._page(offset)
            except (requests.RequestException, ValueError) as exc:
                log.warning("Whale activity fetch failed at offset %d: %s", offset, exc)
                break
            if not batch:
                break
            for raw in batch:
                if int(raw.get("timestamp") or 0) <= last_ts:
                    done = True
                    break
                if raw.get("type") != "TRADE" or not is_crypto_updown(raw):
                    continue
                fresh.append(process_trade(raw))
            if len(batch) < PAGE_SIZE:
                break
            offset += PAGE_SIZE
            if not done:
                self._sleep(PAGE_DELAY_S)

        added = self.db.add(fresh) if fresh else 0
        if added:
            log.info("Whale tracker: %d new trades", added)
        return fresh

    def backfill(self) -> int:
        """Walk the whole reachable history. Returns the number of new fills stored."""
        added = 0
        fetched = 0
        for offset in range(0, MAX_API_OFFSET, PAGE_SIZE):
            try:
                batch = self._page(offset)
            except (requests.RequestException, ValueError) as exc:
                log.error("Whale backfill stopped at offset %d: %s", offset, exc)
                break
            if not batch:
                break
            fetched += len(batch)
            trades = [
                process_trade(raw) for raw in batch
                if raw.get("type") == "TRADE" and is_crypto_updown(raw)
            ]
            if trades:
                added += self.db.add(trades)
            if len(batch) < PAGE_SIZE:
                break
            self._sleep(BACKFILL_PAGE_DELAY_S)
        log.info("Whale backfill complete: %d records fetched, %d new crypto trades", fetched, added)
        return added

    def signal(self, slug: str) -> WhaleSignal | None:
        return window_signal(self.db.for_slug(slug)) if slug else None

    def activity(self, asset: str, minutes_back: float = 15) -> WhaleActivity:
        recent = self.db.for_asset_since(asset, self._clock() - minutes_back * 60)
        if not recent:
            return WhaleActivity(active=False)
        up, down, imbalance = _flow(recent)
        return WhaleActivity(
            active=True,
            trade_count=len(recent),
            total_usdc=round(up + down, 2),
            flow_imbalance=round(imbalance, 3),
            dominant_side=_dominant(imbalance),
        )

    def analyze(self) -> str:
        return analyze_trades(self.db.all(), self.wallet)

    def cross_reference(self, our_trades: dict[str, dict[str, Any]]) -> str:
        return cross_reference(self.db.all(), our_trades)


# ── Reports ──

def _pct(part: int, whole: int) -> str:
    return f"{part / whole * 100:.1f}%" if whole else "0.0%"


def analyze_trades(trades: list[dict[str, Any]], wallet: str = "") -> str:
    if not trades:
        return "No trades to analyze."
    n = len(trades)
    lines = [
        f"# Whale Analysis ({wallet[:8]}...)",
        f"\nAnalyzed: {n} crypto up/down trades",
        f"Period: {trades[0]['timestamp']} to {trades[-1]['timestamp']}",
    ]

    lines.append("\n## Trades by Asset")
    by_asset: dict[str, list] = defaultdict(list)
    for t in trades:
        by_asset[t["asset"]].append(t)
    for asset, ts in sorted(by_asset.items(), key=lambda kv: -len(kv[1])):
        usdc = sum(t["usdcSize"] or 0 for t in ts)
        lines.append(f"- **{asset}**: {len(ts)} trades (${usdc:.2f} USDC)")

    lines.append("\n## Direction Preference")
    by_dir: dict[str, list] = defaultdict(list)
    for t in trades:
        by_dir[t["direction"]].append(t)
    for direction, ts in by_dir.items():
        usdc = sum(t["usdcSize"] or 0 for t in ts)
        lines.append(f"- **{direction}**: {len(ts)} trades (${usdc:.2f} USDC), {_pct(len(ts), n)}")

    timed = sorted(
        t["minutesIntoWindow"] for t in trades
        if t["minutesIntoWindow"] is not None and t["minutesIntoWindow"] >= 0
    )
    lines.append("\n## Entry Timing (minutes into window)")
    if timed:
        early = sum(1 for m in timed if m < 3)
        mid = sum(1 for m in timed if 3 <= m < 10)
        late = sum(1 for m in timed if m >= 10)
        lines += [
            f"- Average: {statistics.mean(timed):.2f} min",
            f"- Median: {timed[len(timed) // 2]:.2f} min",
            f"- Range: {timed[0]:.2f} - {timed[-1]:.2f} min",
            f"- Early (<3m): {early} ({_pct(early, len(timed))})",
            f"- Mid (3-10m): {mid} ({_pct(mid, len(timed))})",
            f"- Late (>10m): {late} ({_pct(late, len(timed))})",
        ]

    prices = sorted(t["price"] for t in trades if t["price"] and t["price"] > 0)
    lines.append("\n## Entry Prices (odds they buy at)")
    if prices:
        cheap = sum(1 for p in prices if p < 0.3)
        fair = sum(1 for p in prices if 0.3 <= p < 0.6)
        expensive = sum(1 for p in prices if p >= 0.6)
        lines += [
            f"- Average: {statistics.mean(prices):.3f}",
            f"- Median: {prices[len(prices) // 2]:.3f}",
            f"- Range: {prices[0]:.3f} - {prices[-1]:.3f}",
            f"- Cheap (<0.30): {cheap} ({_pct(cheap, len(prices))})",
            f"- Fair (0.30-0.60): {fair} ({_pct(fair, len(prices))})",
            f"- Expensive (>0.60): {expensive} ({_pct(expensive, len(prices))})",
        ]

    sizes = sorted(t["usdcSize"] for t in trades if t["usdcSize"] and t["usdcSize"] > 0)
    lines.append("\n## Trade Sizes (USDC)")
    if sizes:
        lines += [
            f"- Total volume: ${sum(sizes):.2f}",
            f"- Average: ${statistics.mean(sizes):.2f}",
            f"- Median: ${sizes[len(sizes) // 2]:.2f}",
            f"- Max: ${sizes[-1]:.2f}",
        ]

    lines.append("\n## Window Duration Preference")
    durations = Counter(t["windowDurationMin"] or "unknown" for t in trades)
    for dur, count in durations.most_common():
        label = f"{dur:g}" if isinstance(dur, (int, float)) else dur
        lines.append(f"- {label} min: {count} trades ({_pct(count, n)})")

    lines.append("\n## Trading Hours (UTC)")
    hours = Counter(datetime.fromisoformat(t["timestamp"]).hour for t in trades)
    peak = max(hours.values())
    for hour in sorted(hours):
        bar = "#" * -(-hours[hour] * 20 // peak)
        lines.append(f"- {hour:02d}:00 {bar} {hours[hour]}")

    lines.append("\n## Side (BUY vs SELL)")
    buys = sum(1 for t in trades if t["side"] == "BUY")
    sells = sum(1 for t in trades if t["side"] == "SELL")
    lines.append(f"- BUY: {buys} ({_pct(buys, n)})")
    lines.append(f"- SELL: {sells} ({_pct(sells, n)})")

    lines.append(f"\n---\n*Generated: {datetime.now(timezone.utc).isoformat()}*")
    return "\n".join(lines)


def _minutes_between(later: str | None, earlier: str | None) -> float | None:
    if not later or not earlier:
        return None
    try:
        a = datetime.fromisoformat(str(later).replace("Z", "+00:00"))
        b = datetime.fromisoformat(str(earlier).replace("Z", "+00:00"))
    except ValueError:
        return None
    return (a - b).total_seconds() / 60


def cross_reference(whale_trades: list[dict[str, Any]], our_trades: dict[str, dict[str, Any]]) -> str:
    """Compare our bets with the whale's flow in the same windows."""
    windows: dict[str, dict[str, Any]] = {}
    for t in whale_trades:
        w = windows.setdefault(t["marketSlug"], {"trades": [], "dir_usdc": defaultdict(float), "total": 0.0})
        w["trades"].append(t)
        w["dir_usdc"][t["direction"]] += t["usdcSize"] or 0
        w["total"] += t["usdcSize"] or 0

    for w in windows.values():
        w["primary"] = max(w["dir_usdc"].items(), key=lambda kv: kv[1])[0]
        weights = [(t["price"], t["usdcSize"] or 1) for t in w["trades"]]
        w_sum = sum(wt for _, wt in weights)
        w["avg_price"] = sum(p * wt for p, wt in weights) / w_sum if w_sum else 0.0
        entries = [t["minutesIntoWindow"] for t in w["trades"] if t["minutesIntoWindow"] is not None]
        w["avg_entry"] = statistics.mean(entries) if entries else None

    overlaps = []
    for slug, ours in our_trades.items():
        whale = windows.get(slug)
        if whale is None:
            continue
        our_entry = _minutes_between(ours.get("timestamp"), ours.get("windowStart"))
        overlaps.append({
            "slug": slug,
            "asset": ours.get("asset"),
            "our_dir": ours.get("direction"),
            "whale_dir": whale["primary"],
            "agreed": ours.get("direction") == whale["primary"],
            "our_odds": ours.get("entryOdds"),
            "whale_price": round(whale["avg_price"], 3),
            "whale_usdc": round(whale["total"], 2),
            "our_entry": our_entry,
            "whale_entry": whale["avg_entry"],
            "result": ours.get("result"),
        })

    lines = [
        "\n## Cross-Reference: Us vs Whale",
        f"\nOur trades: {len(our_trades)} | Whale windows: {len(windows)}",
        f"**Overlapping windows: {len(overlaps)}**",
    ]
    if not overlaps:
        lines.append("\nNo overlapping windows found.")
        if whale_trades:
            lines.append(f"- Whale trades range: {whale_trades[0]['timestamp']} -> {whale_trades[-1]['timestamp']}")
        return "\n".join(lines)

    agree = sum(1 for o in overlaps if o["agreed"])
    disagree = len(overlaps) - agree
    lines += [
        "\n### Agreement Rate",
        f"- Same direction: {agree}/{len(overlaps)} ({_pct(agree, len(overlaps))})",
        f"- Opposite direction: {disagree}/{len(overlaps)} ({_pct(disagree, len(overlaps))})",
    ]

    resolved = [o for o in overlaps if o["result"]]
    if resolved:
        lines.append("\n### Win Rates (resolved windows only)")
        agreed = [o for o in resolved if o["agreed"]]
        disagreed = [o for o in resolved if not o["agreed"]]
        if agreed:
            wins = sum(1 for o in agreed if str(o["result"]).lower() in ("win", "won"))
            lines.append(f"- When agreed: {wins}/{len(agreed)} wins ({_pct(wins, len(agreed))})")
        if disagreed:
            ours_right = sum(1 for o in disagreed if str(o["result"]).lower() in ("win", "won"))
            lines.append(f"- When disagreed, we were right: {ours_right}/{len(disagreed)} ({_pct(ours_right, len(disagreed))})")
            lines.append(
                f"- When disagreed, whale was right: {len(disagreed) - ours_right}/{len(disagreed)} "
                f"({_pct(len(disagreed) - ours_right, len(disagreed))})"
            )
    else:
        lines.append("\n### Win Rates\n- No resolved results yet.")

    timed = [o for o in overlaps if o["our_entry"] is not None and o["whale_entry"] is not None]
    if timed:
        whale_first = sum(1 for o in timed if o["whale_entry"] < o["our_entry"])
        lines += [
            "\n### Entry Timing (shared windows)",
            f"- Our avg entry: {statistics.mean(o['our_entry'] for o in timed):.2f} min into window",
            f"- Whale avg entry: {statistics.mean(o['whale_entry'] for o in timed):.2f} min into window",
            f"- Whale trades first: {whale_first}/{len(timed)} ({_pct(whale_first, len(timed))})",
        ]

    priced = [o for o in overlaps if o["our_odds"] and o["whale_price"]]
    if priced:
        ours_avg = statistics.mean(o["our_odds"] for o in priced)
        whale_avg = statistics.mean(o["whale_price"] for o in priced)
        lines += [
            "\n### Entry Odds Comparison",
            f"- Our avg entry odds: {ours_avg:.3f}",
            f"- Whale avg entry price: {whale_avg:.3f}",
            f"- Whale gets {'better' if whale_avg < ours_avg else 'worse'} prices on avg",
        ]

    lines += [
        "\n### Individual Overlaps",
        "| Window | Asset | Us | Whale | Agree? | Our Odds | Whale Price | Whale $ | Result |",
        "|--------|-------|----|-------|--------|----------|-------------|---------|--------|",
    ]
    for o in overlaps[:50]:
        window = re.sub(r".*updown-\d+m-", "", o["slug"])
        lines.append(
            f"| {window} | {o['asset']} | {o['our_dir']} | {o['whale_dir']} | "
            f"{'yes' if o['agreed'] else 'no'} | {o['our_odds'] or '-'} | {o['whale_price'] or '-'} | "
            f"${o['whale_usdc']} | {o['result'] or 'pending'} |"
        )
    if len(overlaps) > 50:
        lines.append(f"\n... and {len(overlaps) - 50} more")

    lines.append("\n### Signal Interpretation")
    if agree > disagree:
        lines.append("**Confirming signal**: whale mostly agrees with our direction.")
    elif disagree > agree:
        lines.append("**Contrarian signal**: whale often takes the opposite side.")
    else:
        lines.append("**Neutral**: no clear pattern of agreement or disagreement yet.")
    return "\n".join(lines)
