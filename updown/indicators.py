from __future__ import annotations

from dataclasses import dataclass

import numpy as np

MIN_SAMPLES = 5
RSI_PERIOD = 14
MOMENTUM_LOOKBACK = 5


@dataclass(frozen=True)
class Indicators:
    rsi: float = 50.0
    momentum: float = 0.0   # change in Up price over the lookback, as a fraction


def wilder_rsi(values: list[float] | np.ndarray, period: int) -> float | None:
    """Latest RSI using Wilder's smoothing; None if the series is too short."""
    arr = np.asarray(values, dtype=float)
    if period < 1 or len(arr) < period + 1:
        return None
    deltas = np.diff(arr)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = gains[:period].mean()
    avg_loss = losses[:period].mean()
    for g, l in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + g) / period
        avg_loss = (avg_loss * (period - 1) + l) / period

    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return float(100.0 - 100.0 / (1.0 + rs))


def odds_indicators(up_odds: list[float]) -> Indicators:
    """RSI and momentum on the Up price series (scaled to 0-100)."""
    if len(up_odds) < MIN_SAMPLES:
        return Indicators()
    prices = np.asarray(up_odds, dtype=float) * 100
    period = min(RSI_PERIOD, len(prices) - 1)
    rsi_val = wilder_rsi(prices, period)
    lookback = min(MOMENTUM_LOOKBACK, len(prices) - 1)
    momentum = float(prices[-1] - prices[-1 - lookback]) / 100
    return Indicators(rsi=rsi_val if rsi_val is not None else 50.0, momentum=momentum)


def volatility_ratio(prices: list[float], window: int = 20) -> float | None:
    """Latest bar-to-bar move relative to the mean of the last ``window`` moves.

    Needs ``window + 1`` prices; returns 1.0 when the average move is zero.
    """
    if len(prices) < window + 1:
        return None
    moves = np.abs(np.diff(np.asarray(prices, dtype=float)))
    avg = moves[-window:].mean()
    if avg <= 0:
        return 1.0
    return float(moves[-1] / avg)
