"""Signal synthesis.

Every contributing family adds to one signed score (positive = Up). The
score is scaled by the volatility regime, discarded below ``minScore`` and
mapped to a bounded confidence that doubles as our fair price for the
chosen side.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from updown.history import CorrelationSignal, PriceChange
from updown.indicators import Indicators
from updown.liquidation_feed import LiquidationSignal
from updown.market_discovery import Market
from updown.orderbook_feed import NEUTRAL, OrderBookSignal
from updown.sentiment import AssetSentiment
from updown.trading_config import TradingConfig

log = logging.getLogger(__name__)

CATEGORIES = (
    "technical", "odds", "sentiment", "correlation", "breaking",
    "arb", "momentum", "orderflow", "liquidation",
)

# ── Component thresholds ──
RSI_OVERSOLD = 30
RSI_OVERBOUGHT = 70
RSI_POINTS = 2.0
MOMENTUM_THRESHOLD = 0.05
MOMENTUM_POINTS = 1.5
UNDERDOG_ODDS = 0.35
UNDERDOG_POINTS = 1.5
SENTIMENT_MIN_CONF = 0.6
BREAKING_AMPLIFIER = 1.5
BREAKING_POINTS = 3.0
CORRELATION_POINTS = 2.0
ARB_BASE_POINTS = 3.0
ARB_MAX_ODDS_BOOST = 0.3
TREND_WINDOW_MIN = 30
TREND_MIN_MOVE = 0.001
TREND_CONFIRM_POINTS = 0.5
TREND_OPPOSE_POINTS = 1.0
VWAP_DEVIATION = 0.01
FUNDING_THRESHOLD = 0.0005   # 0.05%
FUNDING_POINTS = 0.5


@dataclass(frozen=True)
class ArbOpportunity:
    direction: str
    expected_odds: float
    actual_odds: float
    discrepancy: float
    price_move: float

    @property
    def points(self) -> float:
        return ARB_BASE_POINTS + self.discrepancy * 10


@dataclass(frozen=True)
class SignalInputs:
    """Everything one asset's signal reads, captured once per cycle."""
    market: Market
    indicators: Indicators = Indicators()
    sentiment: AssetSentiment | None = None
    correlation: CorrelationSignal | None = None
    price_change: PriceChange | None = None
    trend_30m: float | None = None
    orderbook: OrderBookSignal = NEUTRAL
    liquidation: LiquidationSignal | None = None
    vwap: float | None = None
    funding_rate: float | None = None
    volatility_ratio: float | None = None


@dataclass
class Signal:
    asset: str
    slug: str
    direction: str
    market_odds: float
    fair_odds: float
    edge: float
    confidence: float
    score: float
    signals: list[str] = field(default_factory=list)
    signal_types: dict[str, int] = field(default_factory=dict)
    has_breaking_news: bool = False
    arb: ArbOpportunity | None = None

    @property
    def category_count(self) -> int:
        return sum(1 for v in self.signal_types.values() if v > 0)

    def active_categories(self, exclude: str = "") -> list[str]:
        return [k for k, v in self.signal_types.items() if v > 0 and k != exclude]


def confidence_for_score(score: float, cfg: TradingConfig) -> float:
    """min(base + |score| / divisor * span, cap). Monotonic in |score|."""
    base = cfg.param("confidenceBase")
    raw = base + abs(score) / cfg.param("confidenceDivisor") * cfg.param("confidenceSpan")
    return max(base, min(raw, cfg.param("confidenceCap")))


def detect_arb(market: Market, change: PriceChange | None, cfg: TradingConfig) -> ArbOpportunity | None:
    """Spot moved but the market's odds have not caught up."""
    if change is None or not change.change:
        return None
    move = change.change
    if abs(move) < cfg.param("arbMinPriceMove"):
        return None
    direction = "Up" if move > 0 else "Down"
    expected = 0.5 + min(abs(move) * 10, ARB_MAX_ODDS_BOOST)
    actual = market.odds_for(direction)
    discrepancy = expected - actual
    if discrepancy < cfg.param("arbMinDiscrepancy"):
        return None
    return ArbOpportunity(direction, expected, actual, discrepancy, move)


def generate_signal(inputs: SignalInputs, cfg: TradingConfig) -> Signal | None:
    """Score one market. Returns None when |score| is below the minimum."""
    market = inputs.market
    notes: list[str] = []
    types = dict.fromkeys(CATEGORIES, 0)
    score = 0.0
    has_breaking = False

    # ── Technical: RSI extremes and odds momentum ──
    ind = inputs.indicators
    if ind.rsi < RSI_OVERSOLD:
        notes.append("RSI oversold (<30)")
        score += RSI_POINTS
        types["technical"] += 1
    elif ind.rsi > RSI_OVERBOUGHT:
        notes.append("RSI overbought (>70)")
        score -= RSI_POINTS
        types["technical"] += 1

    if ind.momentum > MOMENTUM_THRESHOLD:
        notes.append(f"Momentum +{ind.momentum * 100:.1f}%")
        score += MOMENTUM_POINTS
        types["technical"] += 1
    elif ind.momentum < -MOMENTUM_THRESHOLD:
        notes.append(f"Momentum {ind.momentum * 100:.1f}%")
        score -= MOMENTUM_POINTS
        types["technical"] += 1

    # ── Odds extremes (contrarian) ──
    if market.up_odds < UNDERDOG_ODDS:
        notes.append(f"Up underdog ({market.up_odds * 100:.0f}%)")
        score += UNDERDOG_POINTS
        types["odds"] += 1
    elif market.down_odds < UNDERDOG_ODDS:
        notes.append(f"Down underdog ({market.down_odds * 100:.0f}%)")
        score -= UNDERDOG_POINTS
        types["odds"] += 1

    # ── Sentiment ──
    sent = inputs.sentiment
    if sent is not None:
        if sent.breaking_news:
            has_breaking = True
            notes.append("BREAKING NEWS")
            types["breaking"] += 1
            score *= BREAKING_AMPLIFIER
            if sent.sentiment == "bullish":
                score += BREAKING_POINTS
            elif sent.sentiment == "bearish":
                score -= BREAKING_POINTS
        elif sent.confidence > SENTIMENT_MIN_CONF and sent.sentiment in ("bullish", "bearish"):
            notes.append(f"Sentiment: {sent.sentiment} ({sent.confidence * 100:.0f}%)")
            score += sent.confidence * 2 if sent.sentiment == "bullish" else -sent.confidence * 2
            types["sentiment"] += 1

    # ── BTC leads the alts ──
    corr = inputs.correlation
    if corr is not None and market.asset != "BTC":
        notes.append(corr.message)
        score += CORRELATION_POINTS if corr.direction == "Up" else -CORRELATION_POINTS
        types["correlation"] += 1

    # ── Price-to-odds arbitrage ──
    arb = detect_arb(market, inputs.price_change, cfg)
    if arb is not None:
        sign = "+" if arb.price_move > 0 else ""
        notes.append(
            f"ARB: {arb.direction} (price {sign}{arb.price_move * 100:.2f}%, "
            f"odds lag {arb.discrepancy * 100:.1f}%)"
        )
        score += arb.points if arb.direction == "Up" else -arb.points
        types["arb"] += 1

    # ── 30m trend confirms or opposes the current lean ──
    trend = inputs.trend_30m
    if trend is not None and abs(trend) > TREND_MIN_MOVE:
        lean = 1.0 if score > 0 else -1.0
        if (trend > 0) == (lean > 0):
            score += TREND_CONFIRM_POINTS * lean
            notes.append(f"30m momentum confirms ({trend * 100:.2f}%)")
        else:
            score -= TREND_OPPOSE_POINTS * lean
            notes.append(f"30m momentum opposes ({trend * 100:.2f}%)")
        types["momentum"] += 1

    # ── Order flow ──
    ob = inputs.orderbook
    ob_score = ob.score()
    if ob.direction:
        notes.append(f"OrderBook imbalance {ob.imbalance:.2f} -> {ob.direction}")
        if ob.large_sweep:
            notes.append("Large sweep detected (>$500K)")
        if ob.mm_pull:
            notes.append("MM depth pull detected")
        score += ob_score
        types["orderflow"] += 1

    # ── Liquidation cascade ──
    liq = inputs.liquidation
    if liq is not None and liq.score():
        score += liq.score()
        notes.append(f"Liquidations: ${liq.volume / 1e6:.1f}M ({liq.strength}) -> {liq.direction}")
        types["liquidation"] += 1

    # ── VWAP mean reversion ──
    if inputs.vwap and inputs.price_change is not None:
        deviation = (inputs.price_change.latest - inputs.vwap) / inputs.vwap
        if abs(deviation) > VWAP_DEVIATION:
            score += -1.0 if deviation > 0 else 1.0
            notes.append(f"VWAP deviation {deviation * 100:.2f}%")
            types["technical"] += 1

    # ── Funding (bet against the crowd) ──
    rate = inputs.funding_rate
    if rate is not None and abs(rate) > FUNDING_THRESHOLD:
        score += -FUNDING_POINTS if rate > 0 else FUNDING_POINTS
        notes.append(f"Funding {rate * 100:.3f}% -> contrarian {'Down' if rate > 0 else 'Up'}")
        types["technical"] += 1

    # ── Volatility regime ──
    ratio = inputs.volatility_ratio
    if ratio is not None:
        if ratio < cfg.param("regimeLowRatio"):
            mult = cfg.param("regimeLowMultiplier")
            score *= mult
            notes.append(f"Low vol regime (ATR {ratio:.2f}x avg), scores x{mult:g}")
        elif ratio > cfg.param("regimeHighRatio"):
            mult = cfg.param("regimeHighMultiplier")
            score *= mult
            notes.append(f"High vol regime (ATR {ratio:.2f}x avg), scores x{mult:g}")

    if abs(score) < cfg.param("minScore"):
        return None

    direction = "Up" if score > 0 else "Down"
    market_odds = market.odds_for(direction)
    confidence = confidence_for_score(score, cfg)
    return Signal(
        asset=market.asset,
        slug=market.slug,
        direction=direction,
        market_odds=market_odds,
        fair_odds=confidence,
        edge=confidence - market_odds,
        confidence=confidence,
        score=score,
        signals=notes,
        signal_types=types,
        has_breaking_news=has_breaking,
        arb=arb,
    )
