from __future__ import annotations

from types import MappingProxyType

import pytest

from updown.history import CorrelationSignal, PriceChange
from updown.indicators import Indicators
from updown.liquidation_feed import LiquidationSignal
from updown.market_discovery import Market
from updown.orderbook_feed import OrderBookSignal
from updown.sentiment import AssetSentiment
from updown.signals import SignalInputs, confidence_for_score, detect_arb, generate_signal
from updown.trading_config import DEFAULT_PARAMS, TradingConfig


def market(asset="BTC", up=0.5, slug=None) -> Market:
    return Market(
        slug=slug or f"{asset.lower()}-updown-15m-1772452800",
        asset=asset,
        condition_id="0xcond",
        token_ids=("tok-up", "tok-down"),
        up_odds=up,
        down_odds=round(1 - up, 2),
        volume=1000.0,
        liquidity=500.0,
        start=None,
        end=None,
    )


def config(**params) -> TradingConfig:
    merged = dict(DEFAULT_PARAMS)
    merged.update(params)
    return TradingConfig(params=MappingProxyType(merged))


class TestConfidence:
    def test_bounds_and_monotonic(self):
        cfg = TradingConfig()
        scores = [0, 0.5, 1, 2, 3.5, 6, 10, 100, -4]
        values = [confidence_for_score(s, cfg) for s in sorted(scores, key=abs)]
        assert all(0.50 <= v <= 0.80 for v in values)
        assert values == sorted(values)

    def test_formula(self):
        assert confidence_for_score(3.5, TradingConfig()) == pytest.approx(0.675)
        assert confidence_for_score(-12, TradingConfig()) == pytest.approx(0.80)


class TestGenerateSignal:
    def test_below_min_score_yields_nothing(self):
        assert generate_signal(SignalInputs(market=market()), TradingConfig()) is None

    def test_technical_scenario(self):
        sig = generate_signal(
            SignalInputs(market=market(up=0.42), indicators=Indicators(rsi=25, momentum=0.06)),
            TradingConfig(),
        )
        assert sig.direction == "Up"
        assert sig.score == pytest.approx(3.5)
        assert sig.confidence == pytest.approx(0.675)
        assert sig.edge == pytest.approx(0.255)
        assert sig.category_count == 1
        assert sig.fair_odds == sig.confidence

    def test_underdog_is_contrarian(self):
        sig = generate_signal(SignalInputs(market=market(up=0.30)), TradingConfig())
        assert sig.direction == "Up"
        assert sig.signal_types["odds"] == 1

    def test_bearish_sentiment(self):
        sent = AssetSentiment(sentiment="bearish", confidence=0.8)
        sig = generate_signal(
            SignalInputs(market=market(), indicators=Indicators(rsi=75), sentiment=sent),
            TradingConfig(),
        )
        assert sig.direction == "Down"
        assert sig.score == pytest.approx(-3.6)
        assert sig.category_count == 2

    def test_breaking_news_amplifies(self):
        sent = AssetSentiment(sentiment="bullish", confidence=0.9, breaking_news=True)
        sig = generate_signal(
            SignalInputs(market=market(), indicators=Indicators(rsi=25), sentiment=sent),
            TradingConfig(),
        )
        assert sig.has_breaking_news
        assert sig.score == pytest.approx(2 * 1.5 + 3)

    def test_correlation_only_biases_alts(self):
        corr = CorrelationSignal(direction="Up", btc_move=0.04, message="BTC moved")
        btc = generate_signal(SignalInputs(market=market("BTC"), correlation=corr), TradingConfig())
        eth = generate_signal(SignalInputs(market=market("ETH"), correlation=corr), TradingConfig())
        assert btc is None
        assert eth.direction == "Up"
        assert eth.signal_types["correlation"] == 1

    def test_arb_adds_weighted_points(self):
        change = PriceChange(change=0.005, latest=100.5, previous=100.0)
        sig = generate_signal(SignalInputs(market=market(up=0.45), price_change=change), TradingConfig())
        # expected odds 0.55 vs 0.45 actual
        assert sig.arb is not None
        assert sig.arb.discrepancy == pytest.approx(0.10)
        assert sig.score == pytest.approx(3 + 0.10 * 10)

    def test_trend_opposing_lean_subtracts(self):
        sig = generate_signal(
            SignalInputs(market=market(), indicators=Indicators(rsi=25, momentum=0.06), trend_30m=-0.01),
            TradingConfig(),
        )
        assert sig.score == pytest.approx(3.5 - 1.0)
        assert sig.signal_types["momentum"] == 1

    def test_trend_confirming_lean_adds(self):
        sig = generate_signal(
            SignalInputs(market=market(), indicators=Indicators(rsi=25, momentum=0.06), trend_30m=0.01),
            TradingConfig(),
        )
        assert sig.score == pytest.approx(4.0)

    def test_orderflow_counts_only_with_direction(self):
        flat = OrderBookSignal(imbalance=1.5, large_sweep=True)
        sig = generate_signal(
            SignalInputs(market=market(), indicators=Indicators(rsi=25), orderbook=flat), TradingConfig(),
        )
        assert sig.signal_types["orderflow"] == 0
        assert sig.score == pytest.approx(2.0)

    def test_orderflow_capped(self):
        ob = OrderBookSignal(imbalance=50.0, direction="Up", large_sweep=True, mm_pull=True)
        sig = generate_signal(
            SignalInputs(market=market(), indicators=Indicators(rsi=25), orderbook=ob), TradingConfig(),
        )
        assert sig.score == pytest.approx(3.0)
        assert sig.signal_types["orderflow"] == 1

    def test_liquidation_strength(self):
        liq = LiquidationSignal(direction="Down", strength="strong", volume=2_500_000, long_usd=2_500_000)
        sig = generate_signal(SignalInputs(market=market(), liquidation=liq), TradingConfig())
        assert sig.direction == "Down"
        assert sig.score == pytest.approx(-2.0)

    def test_funding_is_contrarian(self):
        sig = generate_signal(
            SignalInputs(market=market(), indicators=Indicators(rsi=25), funding_rate=0.001),
            TradingConfig(),
        )
        assert sig.score == pytest.approx(1.5)

    def test_low_volatility_halves_score(self):
        sig = generate_signal(
            SignalInputs(market=market(), indicators=Indicators(rsi=25, momentum=0.06), volatility_ratio=0.5),
            TradingConfig(),
        )
        assert sig.score == pytest.approx(1.75)

    def test_high_volatility_boosts_score(self):
        sig = generate_signal(
            SignalInputs(market=market(), indicators=Indicators(rsi=25), volatility_ratio=2.0),
            TradingConfig(),
        )
        assert sig.score == pytest.approx(2.4)

    def test_regime_constants_are_configurable(self):
        sig = generate_signal(
            SignalInputs(market=market(), indicators=Indicators(rsi=25), volatility_ratio=2.0),
            config(regimeHighMultiplier=1.5),
        )
        assert sig.score == pytest.approx(3.0)


class TestDetectArb:
    def test_small_move_ignored(self):
        change = PriceChange(change=0.001, latest=100.1, previous=100.0)
        assert detect_arb(market(up=0.45), change, TradingConfig()) is None

    def test_odds_already_priced_in(self):
        change = PriceChange(change=0.005, latest=100.5, previous=100.0)
        assert detect_arb(market(up=0.54), change, TradingConfig()) is None

    def test_down_move(self):
        change = PriceChange(change=-0.01, latest=99.0, previous=100.0)
        arb = detect_arb(market(up=0.5), change, TradingConfig())
        assert arb.direction == "Down"
        assert arb.expected_odds == pytest.approx(0.6)
