"""
Volatility measures: true range, ATR, velocity and the volatility regime.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from ..types import Candle, VolatilityRegime

ATR_PERIOD = 14
SLOW_ATR_PERIOD = 28
REGIME_ACCELERATION = 0.2
VELOCITY_BARS = 5


def true_range(candles: Sequence[Candle]) -> NDArray[np.float64]:
    """True range per candle; the first candle uses its high-low range."""
    if not candles:
        return np.zeros(0)
    highs = np.array([c.high for c in candles], dtype=float)
    lows = np.array([c.low for c in candles], dtype=float)
    closes = np.array([c.close for c in candles], dtype=float)

    tr = highs - lows
    if len(candles) > 1:
        prev_close = closes[:-1]
        tr[1:] = np.maximum.reduce([
            highs[1:] - lows[1:],
            np.abs(highs[1:] - prev_close),
            np.abs(lows[1:] - prev_close),
        ])
    return tr


def rolling_atr(candles: Sequence[Candle], period: int = ATR_PERIOD) -> NDArray[np.float64]:
    """
    Rolling mean of true range.

    Entries before a full window is available are 0.0 rather than NaN.
    """
    tr = true_range(candles)
    out = np.zeros(len(tr))
    if period <= 0 or len(tr) < period:
        return out
    window_sums = np.convolve(tr, np.ones(period), mode="valid")
    out[period - 1:] = window_sums / period
    return out


def average_true_range(candles: Sequence[Candle], period: int = ATR_PERIOD) -> float:
    """ATR over the last ``period`` candles (needs ``period + 1`` candles)."""
    if len(candles) < period + 1:
        return 0.0
    tr = true_range(candles[-(period + 1):])
    return float(tr[1:].mean())


def simple_range_atr(candles: Sequence[Candle], period: int = ATR_PERIOD) -> float:
    """Mean high-low range of the last ``period`` candles."""
    if len(candles) < period or period <= 0:
        return 0.0
    return float(np.mean([c.range for c in candles[-period:]]))


def atr_acceleration(candles: Sequence[Candle]) -> float:
    """(ATR14 - ATR28) / ATR28; 0.0 when the slow ATR is unavailable."""
    slow = average_true_range(candles, SLOW_ATR_PERIOD)
    if slow <= 0:
        return 0.0
    fast = average_true_range(candles, ATR_PERIOD)
    return (fast - slow) / slow


def classify_volatility(candles: Sequence[Candle]) -> VolatilityRegime:
    """Expanding ATR is HIGH, contracting ATR is LOW, otherwise NORMAL."""
    accel = atr_acceleration(candles)
    if accel > REGIME_ACCELERATION:
        return VolatilityRegime.HIGH
    if accel < -REGIME_ACCELERATION:
        return VolatilityRegime.LOW
    return VolatilityRegime.NORMAL


def velocity(candles: Sequence[Candle], bars: int = VELOCITY_BARS) -> float:
    """
    Net displacement over ``bars`` candles in ATR units, scaled by sqrt(bars).

    A random walk sits near 0.6; sustained one-way movement pushes past 1.2.
    """
    if len(candles) < max(bars + 1, ATR_PERIOD + 1):
        return 0.0
    atr = average_true_range(candles)
    if atr <= 0:
        return 0.0
    displacement = abs(candles[-1].close - candles[-(bars + 1)].close)
    return displacement / (atr * math.sqrt(bars))
