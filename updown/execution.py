"""Order execution against the CLOB venue.

Two strategies:

- maker: GTC limit at the signal price, polled every 3s for up to 30s,
  cancelled if still resting
- taker: midpoint sanity check, then FOK capped at signal price + 10c,
  up to 3 attempts; the realized fill price is read back from the
  position book

Every placement goes through ``can_trade()`` first. Daily state lives in
the SQLite store and is mirrored to JSON for monitoring. Placements
already in flight count against the daily and concurrent limits, so
markets executing in parallel cannot overshoot them.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import requests
from py_clob_client.clob_types import OrderArgs, OrderType
from py_clob_client.order_builder.constants import BUY

from updown import store as keys
from updown.auth import ClientFactory
from updown.config import Config
from updown.http_session import get_json
from updown.kill_switch import KillSwitch, TradingModeFile
from updown.store import StateStore

log = logging.getLogger(__name__)

# ── Maker ──
MAKER_FILL_TIMEOUT_S = 30
MAKER_POLL_S = 3
MIN_PRICE = 0.01
MAX_PRICE = 0.99
FILLED_STATUSES = {"MATCHED", "FILLED"}
DEAD_STATUSES = {"CANCELLED", "CANCELED", "EXPIRED"}

# ── Taker ──
TAKER_MIN_MIDPOINT = 0.40
TAKER_MAX_DIVERGENCE = 0.15
TAKER_SLIPPAGE = 0.10
TAKER_MAX_ATTEMPTS = 3
TAKER_RETRY_DELAY_S = 1
FILL_PRICE_POLLS = 3
FILL_PRICE_DELAY_S = 3


@dataclass(frozen=True)
class OrderRequest:
    asset: str
    direction: str
    slug: str
    token_id: str | None
    price: float          # signal's market price for the chosen side
    stake: float
    strategy: str = "taker"


@dataclass
class ExecutionResult:
    success: bool
    reason: str = ""
    order_id: str | None = None
    stake: float = 0.0
    token_id: str | None = None
    order_type: str | None = None
    fill_price: float | None = None
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class VenueError(Exception):
    pass


class InsufficientBalance(VenueError):
    """Balance or allowance too low. Fatal for the day."""


class InsufficientDepth(VenueError):
    """Not enough resting liquidity under the price cap."""


def classify_venue_error(message: str) -> type[VenueError]:
    msg = message.lower()
    if "balance" in msg or "allowance" in msg:
        return InsufficientBalance
    if "depth" in msg or "liquidity" in msg or "no orders found to match" in msg:
        return InsufficientDepth
    return VenueError


def new_daily_state(day: str) -> dict[str, Any]:
    return {
        "date": day,
        "tradesPlaced": 0,
        "totalPnl": 0.0,
        "openPositions": 0,
        "trades": [],
        "killReason": None,
    }


def _as_price(value: Any) -> float | None:
    if isinstance(value, dict):
        value = value.get("mid") or value.get("price")
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class Executor:
    """Serialized writer of daily trading state and the only caller of the venue."""

    def __init__(self, cfg: Config, store: StateStore, kill_switch: KillSwitch,
                 mode: TradingModeFile, clients: ClientFactory | None = None,
                 positions_fetch: Callable[..., Any] | None = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.time):
        self.cfg = cfg
        self.store = store
        self.kill_switch = kill_switch
        self.mode = mode
        self.clients = clients or ClientFactory(cfg)
        self._positions_fetch = positions_fetch or get_json
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._pending = 0

    # ── Daily state ──

    def _today(self) -> str:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).strftime("%Y-%m-%d")

    def _mutate(self, fn: Callable[[dict[str, Any]], None]) -> dict[str, Any]:
        today = self._today()

        def _apply(state):
            if not state or state.get("date") != today:
                state = new_daily_state(today)
            fn(state)
            return state

        state = self.store.update(keys.DAILY_STATE, _apply)
        self._mirror(state)
        return state

    def daily_state(self) -> dict[str, Any]:
        """Today's state, reset if the stored one is from an earlier UTC day."""
        return self._mutate(lambda state: None)

    def record_pnl(self, pnl: float, closed_positions: int = 1) -> dict[str, Any]:
        def _apply(state):
            state["totalPnl"] = round(state["totalPnl"] + pnl, 2)
            state["openPositions"] = max(0, state["openPositions"] - closed_positions)
        return self._mutate(_apply)

    def _mirror(self, state: dict[str, Any]) -> None:
        path = Path(self.cfg.daily_state_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(json.dumps(state, indent=2))
            tmp.replace(path)
        except OSError:
            log.warning("Could not mirror daily state to %s", path)

    # ── Safety ──

    def can_trade(self, state: dict[str, Any] | None = None) -> tuple[bool, str]:
        """(allowed, reason). In-flight placements count toward the limits."""
        if self.kill_switch.is_active():
            return False, "Kill switch is active"

        mode = self.mode.read()
        if mode != "real":
            return False, f"Mode is '{mode}', not 'real'"

        state = state or self.daily_state()
        if state["totalPnl"] <= -self.cfg.max_daily_loss:
            reason = f"Daily loss limit hit: ${abs(state['totalPnl']):.2f}"
            self.kill_switch.activate(reason)
            self._mutate(lambda s: s.update(killReason=reason))
            return False, f"Daily loss limit (${self.cfg.max_daily_loss:g}) hit"

        if state["tradesPlaced"] + self._pending >= self.cfg.max_daily_trades:
            return False, f"Daily trade limit ({self.cfg.max_daily_trades}) reached"

        if state["openPositions"] + self._pending >= self.cfg.max_concurrent_positions:
            return False, f"Max concurrent positions ({self.cfg.max_concurrent_positions}) reached"

        if not self.cfg.private_key:
            return False, "No wallet configured"

        return True, "All checks passed"

    def _reserve(self) -> tuple[bool, str]:
        with self._lock:
            allowed, reason = self.can_trade()
            if allowed:
                self._pending += 1
            return allowed, reason

    def _release(self) -> None:
        with self._lock:
            self._pending -= 1

    # ── Entry point ──

    def execute(self, req: OrderRequest) -> ExecutionResult:
        allowed, reason = self._reserve()
        if not allowed:
            log.info("REAL TRADE BLOCKED: %s", reason)
            return ExecutionResult(success=False, reason=reason)
        try:
            return self._execute(req)
        finally:
            self._release()

    def _execute(self, req: OrderRequest) -> ExecutionResult:
        if not req.token_id:
            return ExecutionResult(success=False, reason="Could not resolve token ID")
        client = self.clients.get()
        if client is None:
            return ExecutionResult(success=False, reason="CLOB client unavailable")

        stake = min(req.stake or self.cfg.max_stake_per_trade, self.cfg.max_stake_per_trade)
        if req.strategy == "maker":
            result = self._execute_maker(client, req, stake)
        else:
            result = self._execute_taker(client, req, stake)

        if result.success:
            self._record_fill(req, result)
        return result

    def _record_fill(self, req: OrderRequest, result: ExecutionResult) -> None:
        trade = {
            "timestamp": datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat(),
            "asset": req.asset,
            "direction": req.direction,
            "stake": result.stake,
            "tokenId": result.token_id,
            "orderId": result.order_id,
            "entryOdds": result.fill_price if result.fill_price is not None else req.price,
            "slug": req.slug,
            "orderType": result.order_type,
        }
        if result.order_type == "maker":
            trade["feeRateBps"] = 0

        def _apply(state):
            state["tradesPlaced"] += 1
            state["openPositions"] += 1
            state["trades"].append(trade)

        self._mutate(_apply)

    # ── Maker ──

    def _execute_maker(self, client, req: OrderRequest, stake: float) -> ExecutionResult:
        price = round(min(MAX_PRICE, max(MIN_PRICE, req.price)), 2)
        size = round(stake / price, 2)
        log.info("MAKER ORDER: %s %s | $%.2f @ %.2f | %.2f shares", req.asset, req.direction, stake, price, size)
        try:
            signed = client.create_order(OrderArgs(price=price, size=size, side=BUY, token_id=req.token_id))
            resp = client.post_order(signed, OrderType.GTC)
        except Exception as exc:
            return self._venue_failure(exc, "maker")
        order_id = resp.get("orderID") or resp.get("id")
        if not order_id:
            return ExecutionResult(success=False, reason=f"Maker order rejected: {resp.get('errorMsg') or resp}",
                                   order_type="maker")

        status = self._wait_for_fill(client, order_id)
        if status in FILLED_STATUSES:
            log.info("MAKER ORDER FILLED: %s", order_id)
            return ExecutionResult(success=True, order_id=order_id, stake=stake, token_id=req.token_id,
                                   order_type="maker", fill_price=price, attempts=1)

        log.info("Maker order %s not filled after %ds (%s)", order_id, MAKER_FILL_TIMEOUT_S, status)
        try:
            client.cancel(order_id)
        except Exception:
            log.warning("Cancel failed for %s", order_id)
        return ExecutionResult(
            success=False,
            reason=f"Maker order not filled within {MAKER_FILL_TIMEOUT_S}s, cancelled",
            order_id=order_id,
            token_id=req.token_id,
            order_type="maker",
            attempts=1,
        )

    def _wait_for_fill(self, client, order_id: str) -> str:
        start = self._clock()
        status = "unknown"
        while self._clock() - start < MAKER_FILL_TIMEOUT_S:
            try:
                order = client.get_order(order_id) or {}
                status = str(order.get("status") or order.get("state") or "unknown").upper()
            except Exception as exc:
                log.warning("Order poll error for %s: %s", order_id, exc)
            if status in FILLED_STATUSES or status in DEAD_STATUSES:
                return status
            self._sleep(MAKER_POLL_S)
        return f"timeout (last: {status})"

    # ── Taker ──

    def _execute_taker(self, client, req: OrderRequest, stake: float) -> ExecutionResult:
        try:
            mid = _as_price(client.get_midpoint(req.token_id))
        except Exception as exc:
            return ExecutionResult(success=False, reason=f"Midpoint lookup failed: {exc}", order_type="taker")
        if mid is None:
            return ExecutionResult(success=False, reason="Midpoint unavailable", order_type="taker")
        if mid < TAKER_MIN_MIDPOINT:
            return ExecutionResult(
                success=False, order_type="taker",
                reason=f"Midpoint {mid:.2f} below {TAKER_MIN_MIDPOINT:.2f} floor",
            )
        if abs(mid - req.price) > TAKER_MAX_DIVERGENCE:
            return ExecutionResult(
                success=False, order_type="taker",
                reason=f"Midpoint {mid:.2f} diverges from signal price {req.price:.2f} by more than 15 points",
            )

        cap = round(min(MAX_PRICE, req.price + TAKER_SLIPPAGE), 2)
        size = round(stake / cap, 2)
        last_error = "FOK order not filled"
        for attempt in range(1, TAKER_MAX_ATTEMPTS + 1):
            if self.kill_switch.is_active():
                return ExecutionResult(success=False, reason="Kill switch is active",
                                       order_type="taker", attempts=attempt - 1)
            log.info("TAKER ORDER: %s %s | $%.2f cap %.2f | attempt %d/%d",
                     req.asset, req.direction, stake, cap, attempt, TAKER_MAX_ATTEMPTS)
            try:
                signed = client.create_order(OrderArgs(price=cap, size=size, side=BUY, token_id=req.token_id))
                resp = client.post_order(signed, OrderType.FOK) or {}
            except Exception as exc:
                failure = self._venue_failure(exc, "taker", attempt)
                if classify_venue_error(str(exc)) is not VenueError:
                    return failure
                last_error = failure.reason
                self._sleep(TAKER_RETRY_DELAY_S)
                continue

            status = str(resp.get("status") or "").lower()
            order_id = resp.get("orderID") or resp.get("id")
            if status in ("matched", "filled") and resp.get("success", True):
                fill = self._resolve_fill_price(req.token_id)
                return ExecutionResult(
                    success=True, order_id=order_id, stake=stake, token_id=req.token_id,
                    order_type="taker", fill_price=fill if fill is not None else cap, attempts=attempt,
                )

            error_msg = str(resp.get("errorMsg") or f"status={status or 'unknown'}")
            kind = classify_venue_error(error_msg)
            if kind is not VenueError:
                return self._venue_failure(kind(error_msg), "taker", attempt)
            last_error = f"FOK rejected: {error_msg}"
            log.warning("FOK attempt %d rejected: %s", attempt, error_msg)
            self._sleep(TAKER_RETRY_DELAY_S)

        return ExecutionResult(success=False, reason=last_error, order_type="taker", attempts=TAKER_MAX_ATTEMPTS)

    def _venue_failure(self, exc: Exception, order_type: str, attempt: int = 1) -> ExecutionResult:
        message = str(exc)
        kind = exc.__class__ if isinstance(exc, VenueError) else classify_venue_error(message)
        if kind is InsufficientBalance:
            self.kill_switch.activate(f"Trade failed: {message}")
            self._mutate(lambda s: s.update(killReason=f"Trade failed: {message}"))
            log.error("Balance/allowance failure, kill switch activated: %s", message)
        elif kind is InsufficientDepth:
            log.warning("Insufficient depth, not retrying: %s", message)
        else:
            log.error("%s order failed: %s", order_type.capitalize(), message)
        return ExecutionResult(success=False, reason=message, order_type=order_type, attempts=attempt)

    def _resolve_fill_price(self, token_id: str) -> float | None:
        """Average entry price for ``token_id`` from the position book."""
        if not self.cfg.funder_address:
            return None
        for poll in range(FILL_PRICE_POLLS):
            if poll:
                self._sleep(FILL_PRICE_DELAY_S)
            try:
                positions = self._positions_fetch(
                    f"{self.cfg.data_api_host}/positions", params={"user": self.cfg.funder_address},
                )
            except (requests.RequestException, ValueError) as exc:
                log.debug("Position lookup failed: %s", exc)
                continue
            for pos in positions or []:
                if str(pos.get("asset")) == str(token_id):
                    price = _as_price(pos.get("avgPrice"))
                    if price:
                        return price
        return None
