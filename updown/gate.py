"""Decision gate.

Safety rails first (kill switch, minimum market price), then the
qualification paths in fixed priority order: arbitrage, breaking news,
edge tiers, smart-money flow. The first path that returns a verdict
decides. Window rules (settling time, time left, one bet per window) are
applied per market by ``check_window``.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from updown import store as keys
from updown.history import PriceChange
from updown.macro_events import MacroAnalysis
from updown.market_discovery import Market
from updown.signals import Signal
from updown.store import StateStore
from updown.trading_config import TradingConfig
from updown.whale_tracker import WhaleSignal

log = logging.getLogger(__name__)

MIN_ELAPSED_MIN = 2.0
MIN_REMAINING_MIN = 5.0
NEWS_HASH_LEN = 50
NEWS_SEEN_KEEP = 50


class PathKind(str, Enum):
    ARB = "arb"
    BREAKING_NEWS = "breakingNews"
    PATH1 = "path1"
    PATH2 = "path2"
    PATH3 = "path3"
    WHALE = "whale"
    MACRO = "macro"


@dataclass(frozen=True)
class Verdict:
    qualify: bool
    reason: str
    path: PathKind | None = None
    confirmed: bool | None = None            # arb: do the other families agree
    whale_confirmed: bool = False
    confirming: tuple[str, ...] = ()


@dataclass(frozen=True)
class TradeDecision:
    qualify: bool
    reason: str
    asset: str
    slug: str
    path: PathKind | None = None
    direction: str | None = None
    stake: float = 0.0
    market_odds: float = 0.0
    confidence: float = 0.0
    edge: float = 0.0
    signal: Signal | None = None
    verdict: Verdict | None = None

    def record(self) -> dict[str, Any]:
        """Flat form for the ledger and the active-trades book."""
        sig = self.signal
        return {
            "asset": self.asset,
            "slug": self.slug,
            "qualify": self.qualify,
            "reason": self.reason,
            "path": self.path.value if self.path else None,
            "direction": self.direction,
            "stake": self.stake,
            "entryOdds": self.market_odds,
            "fairOdds": sig.fair_odds if sig else self.confidence,
            "confidence": self.confidence,
            "edge": self.edge,
            "score": sig.score if sig else 0.0,
            "categoryCount": sig.category_count if sig else 1,
            "signalTypes": dict(sig.signal_types) if sig else {"macro": 1},
            "signals": list(sig.signals) if sig else [],
            "hasBreakingNews": sig.has_breaking_news if sig else False,
            "arbDiscrepancy": sig.arb.discrepancy if sig and sig.arb else 0.0,
            "arbConfirmed": self.verdict.confirmed if self.verdict else None,
            "whaleConfirmed": self.verdict.whale_confirmed if self.verdict else False,
        }


@dataclass
class GateContext:
    """Per-market inputs the paths read besides the signal itself."""
    kill_reason: str | None = None
    whale: WhaleSignal | None = None
    news_summary: str = ""
    price_change: PriceChange | None = None
    news_guard: "NewsGuard | None" = None
    now_ts: float = field(default_factory=time.time)


# ── Breaking-news rate limiting ──

def news_hash(text: str) -> str:
    if not text:
        return ""
    return re.sub(r"[^a-z0-9]", "", text.lower())[:NEWS_HASH_LEN]


class NewsGuard:
    """Cooldown, hourly cap and duplicate suppression for news trades.

    ``admit`` checks every gate and records the trade in one store
    transaction, so two markets cannot both pass on the same hourly allowance.
    """

    def __init__(self, store: StateStore):
        self.store = store

    def admit(self, asset: str, summary: str, price_ok: tuple[bool, str],
              cfg: TradingConfig, now_ts: float) -> str | None:
        """Returns a rejection reason, or None after recording an admitted trade."""
        cooldown_s = cfg.param("breakingNewsCooldownMin") * 60
        max_per_hour = int(cfg.param("breakingNewsMaxPerHour"))
        digest = news_hash(summary)
        reason: str | None = None

        def _check(state):
            nonlocal reason
            state = state or {}
            last = state.setdefault("lastNewsTrade", {})
            hour = [t for t in state.get("newsTradesThisHour", []) if t > now_ts - 3600]
            state["newsTradesThisHour"] = hour
            seen = state.setdefault("seenNewsHashes", [])

            if digest and digest in seen:
                reason = "NEWS already seen (stale)"
            elif asset in last and now_ts - last[asset] < cooldown_s:
                reason = f"NEWS cooldown active for {asset}"
            elif len(hour) >= max_per_hour:
                reason = f"NEWS rate limited ({max_per_hour}/hr max)"
            elif not price_ok[0]:
                reason = price_ok[1]
            else:
                last[asset] = now_ts
                hour.append(now_ts)
                if digest:
                    seen.append(digest)
                    state["seenNewsHashes"] = seen[-NEWS_SEEN_KEEP:]
            return state

        self.store.update(keys.NEWS_STATE, _check, default={})
        return reason


def news_price_confirmation(signal: Signal, change: PriceChange | None,
                            cfg: TradingConfig) -> tuple[bool, str]:
    """News must be moving spot in the signal's direction."""
    if signal.arb is not None or change is None:
        return True, ""
    move = change.change
    matches = (signal.direction == "Up" and move > 0) or (signal.direction == "Down" and move < 0)
    if not matches or abs(move) < cfg.param("breakingNewsMinPriceMove"):
        return False, (
            f"NEWS no price confirmation ({move * 100:.2f}% move, "
            f"need {signal.direction.lower()})"
        )
    return True, ""


# ── Paths ──

class ArbPath:
    kind = PathKind.ARB

    def evaluate(self, signal: Signal, cfg: TradingConfig, ctx: GateContext) -> Verdict | None:
        arb = signal.arb
        if arb is None or not cfg.path_enabled(self.kind.value):
            return None
        if arb.discrepancy < cfg.param("arbMinDiscrepancy") or signal.confidence < cfg.param("arbMinConfidence"):
            return None

        agrees = (arb.direction == "Up") == (signal.score > 0)
        others = signal.active_categories(exclude="arb")
        if others:
            mark, verb = ("✓", "confirms") if agrees else ("✗", "opposes")
            tag = f" [{mark} {'+'.join(others)} {verb}]"
        else:
            tag = " [no other signals]"

        whale_tag = ""
        whale_ok = False
        if ctx.whale is not None and ctx.whale.active:
            whale_ok = ctx.whale.agrees_with(arb.direction, cfg.param("whaleMinImbalance"))
            whale_tag = (
                f" [whale {'✓' if whale_ok else '✗'} flow {ctx.whale.dominant_side} "
                f"{ctx.whale.flow_imbalance * 100:.0f}%]"
            )

        sign = "+" if arb.price_move > 0 else ""
        return Verdict(
            qualify=True,
            reason=(
                f"ARB: Price {sign}{arb.price_move * 100:.2f}%, "
                f"odds lag {arb.discrepancy * 100:.1f}%{tag}{whale_tag}"
            ),
            path=self.kind,
            confirmed=agrees,
            whale_confirmed=whale_ok,
            confirming=tuple(others),
        )


class BreakingNewsPath:
    kind = PathKind.BREAKING_NEWS

    def evaluate(self, signal: Signal, cfg: TradingConfig, ctx: GateContext) -> Verdict | None:
        if not signal.has_breaking_news or not cfg.path_enabled(self.kind.value):
            return None
        if signal.confidence < cfg.param("breakingNewsMinConfidence"):
            return None
        price_ok = news_price_confirmation(signal, ctx.price_change, cfg)
        if ctx.news_guard is None:
            rejection = None if price_ok[0] else price_ok[1]
        else:
            rejection = ctx.news_guard.admit(signal.asset, ctx.news_summary, price_ok, cfg, ctx.now_ts)
        if rejection:
            return Verdict(qualify=False, reason=rejection, path=self.kind)
        return Verdict(
            qualify=True,
            reason=f"BREAKING NEWS ({signal.confidence * 100:.0f}% conf, price-confirmed)",
            path=self.kind,
        )


_TIERS = (
    (PathKind.PATH1, "path1"),
    (PathKind.PATH2, "path2"),
    (PathKind.PATH3, "path3"),
)


class EdgeTierPath:
    """Minimum edge, then the confidence/category tiers on raw and weighted edge."""

    def _tier(self, signal: Signal, cfg: TradingConfig) -> PathKind | None:
        for kind, name in _TIERS:
            if not cfg.path_enabled(name):
                continue
            if (signal.confidence >= cfg.param(f"{name}Confidence")
                    and signal.category_count >= cfg.param(f"{name}Categories")):
                return kind
        return None

    @staticmethod
    def _describe(kind: PathKind, signal: Signal, edge: float) -> str:
        if kind is PathKind.PATH3:
            return f"High conviction ({signal.confidence * 100:.0f}%), {edge * 100:.1f}% edge"
        return (
            f"{signal.category_count} categories, {signal.confidence * 100:.0f}% conf, "
            f"{edge * 100:.1f}% edge"
        )

    def evaluate(self, signal: Signal, cfg: TradingConfig, ctx: GateContext) -> Verdict | None:
        min_edge = cfg.param("minEdge")
        weight = cfg.asset_weight(signal.asset)
        adjusted = signal.edge + weight

        if signal.edge < min_edge and adjusted < min_edge:
            weight_tag = f" [{signal.asset} weight: {weight * 100:+.0f}%]" if weight else ""
            return Verdict(
                qualify=False,
                reason=(
                    f"Insufficient edge (raw {signal.edge * 100:.1f}%, weighted {adjusted * 100:.1f}% "
                    f"< {min_edge * 100:g}% required){weight_tag}"
                ),
            )

        if signal.edge >= min_edge:
            kind = self._tier(signal, cfg)
            if kind is not None:
                label = kind.value.capitalize()
                return Verdict(True, f"{label}: {self._describe(kind, signal, signal.edge)}", kind)

        if weight != 0 and adjusted >= min_edge:
            kind = self._tier(signal, cfg)
            if kind is not None:
                label = kind.value.capitalize()
                tag = f"{signal.asset} {weight * 100:+.0f}%"
                return Verdict(True, f"{label}W[{tag}]: {self._describe(kind, signal, adjusted)}", kind)
        return None


class WhalePath:
    kind = PathKind.WHALE

    def evaluate(self, signal: Signal, cfg: TradingConfig, ctx: GateContext) -> Verdict | None:
        whale = ctx.whale
        if whale is None or not whale.active or not cfg.path_enabled(self.kind.value):
            return None
        if not whale.agrees_with(signal.direction, cfg.param("whaleMinImbalance")):
            return None
        if signal.edge < cfg.param("minEdge"):
            return None
        return Verdict(
            qualify=True,
            reason=(
                f"WHALE: whale {whale.dominant_side} agrees (imbalance {whale.flow_imbalance * 100:.0f}%, "
                f"{whale.trade_count} trades, conf {whale.confidence * 100:.0f}%) | bot: "
                f"{signal.category_count} cats, {signal.confidence * 100:.0f}% conf, {signal.edge * 100:.1f}% edge"
            ),
            path=self.kind,
            whale_confirmed=True,
        )


PATH_ORDER = (ArbPath(), BreakingNewsPath(), EdgeTierPath(), WhalePath())


def evaluate(signal: Signal | None, cfg: TradingConfig, ctx: GateContext) -> Verdict:
    """Run the rails and then the paths in priority order."""
    if signal is None:
        return Verdict(False, "No signal")

    if cfg.kill_switch or ctx.kill_reason is not None:
        return Verdict(False, "Kill switch active, all trading paused")

    min_odds = cfg.param("minMarketOdds")
    if signal.market_odds < min_odds:
        return Verdict(
            False,
            f"Market odds too low ({signal.market_odds * 100:.0f}% < {min_odds * 100:.0f}% min)",
        )

    for path in PATH_ORDER:
        verdict = path.evaluate(signal, cfg, ctx)
        if verdict is not None:
            return verdict

    adjusted = signal.edge + cfg.asset_weight(signal.asset)
    return Verdict(
        False,
        f"No path matched ({signal.confidence * 100:.0f}% conf, {signal.category_count} cats, "
        f"raw {signal.edge * 100:.1f}%/weighted {adjusted * 100:.1f}% edge)",
    )


def check_window(market: Market, now: datetime, already_bet: bool) -> str | None:
    """Reason to skip this window, or None if a bet may be placed."""
    elapsed = market.minutes_elapsed(now)
    remaining = market.minutes_remaining(now)
    if elapsed is not None and elapsed < MIN_ELAPSED_MIN:
        return f"Skipping, only {elapsed:.1f} mins in (need {MIN_ELAPSED_MIN:g}+ for odds to settle)"
    if remaining is not None and remaining < MIN_REMAINING_MIN:
        return f"Skipping, only {remaining:.1f} mins left"
    if already_bet:
        return "Already bet on this market"
    return None


def decide(market: Market, signal: Signal | None, verdict: Verdict, cfg: TradingConfig,
           base_stake: float) -> TradeDecision:
    if not verdict.qualify or signal is None:
        return TradeDecision(
            qualify=False, reason=verdict.reason, asset=market.asset, slug=market.slug,
            path=verdict.path, signal=signal, verdict=verdict,
            direction=signal.direction if signal else None,
            market_odds=signal.market_odds if signal else 0.0,
            confidence=signal.confidence if signal else 0.0,
            edge=signal.edge if signal else 0.0,
        )
    return TradeDecision(
        qualify=True,
        reason=verdict.reason,
        asset=market.asset,
        slug=market.slug,
        path=verdict.path,
        direction=signal.direction,
        stake=cfg.stake_for_confidence(signal.confidence, base_stake),
        market_odds=signal.market_odds,
        confidence=signal.confidence,
        edge=signal.edge,
        signal=signal,
        verdict=verdict,
    )


# ── Macro path ──

def macro_decisions(analysis: MacroAnalysis, markets: list[Market], cfg: TradingConfig,
                    base_stake: float, kill_active: bool = False) -> list[TradeDecision]:
    """Trades implied by fresh macro surprises, one per signal asset with a market."""
    if kill_active or cfg.kill_switch or not cfg.path_enabled(PathKind.MACRO.value):
        return []
    min_odds = cfg.param("macroMinOdds")
    min_edge = cfg.param("macroMinEdge")
    out: list[TradeDecision] = []
    for sig in analysis.signals:
        for asset in sig.assets:
            market = next((m for m in markets if m.asset == asset), None)
            if market is None:
                continue
            odds = market.odds_for(sig.direction)
            if odds < min_odds:
                log.info("Macro %s: odds too low (%.0f%%)", asset, odds * 100)
                continue
            edge = sig.confidence - odds
            if edge < min_edge:
                log.info("Macro %s: insufficient edge (%.1f%%)", asset, edge * 100)
                continue
            out.append(TradeDecision(
                qualify=True,
                reason=(
                    f"MACRO: {sig.title} ({sig.direction}, {sig.confidence * 100:.0f}% conf, "
                    f"{edge * 100:.1f}% edge)"
                ),
                asset=asset,
                slug=market.slug,
                path=PathKind.MACRO,
                direction=sig.direction,
                stake=cfg.stake_for_confidence(sig.confidence, base_stake),
                market_odds=odds,
                confidence=sig.confidence,
                edge=edge,
            ))
    return out
