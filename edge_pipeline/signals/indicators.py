"""
Classic oscillators over candle closes: EMA, RSI (Wilder), MACD,
stochastic and RSI divergence.

Series are numpy arrays aligned with the input candles. Entries before
an indicator has enough history are NaN in the raw series; the snapshot
helpers only ever read finite values.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from ..types import Bias, Candle
from .structure import detect_swing_points

RSI_PERIOD = 14
MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9
STOCH_K = 14
STOCH_D = 3
STOCH_OVERBOUGHT = 80.0
STOCH_OVERSOLD = 20.0
DIVERGENCE_LOOKBACK = 3


@dataclass(frozen=True)
class StochasticSignal:
    index: int
    kind: str  # BULLISH_CROSS | BEARISH_CROSS | OVERBOUGHT | OVERSOLD


@dataclass(frozen=True)
class Divergence:
    direction: Bias
    kind: str
    price_from: float
    price_to: float


@dataclass(frozen=True)
class MomentumSnapshot:
    """Latest oscillator readings consumed by the momentum-cluster rule."""
    rsi: Optional[float] = None
    macd_histogram: Optional[float] = None
    previous_macd_histogram: Optional[float] = None
    stochastic_signal: Optional[str] = None


def _closes(candles: Sequence[Candle]) -> NDArray[np.float64]:
    return np.array([c.close for c in candles], dtype=float)


def ema(values: NDArray[np.float64], period: int) -> NDArray[np.float64]:
    """EMA seeded with the SMA of the first ``period`` values."""
    out = np.full(len(values), np.nan)
    if period <= 0 or len(values) < period:
        return out
    k = 2.0 / (period + 1)
    out[period - 1] = values[:period].mean()
    for i in range(period, len(values)):
        out[i] = (values[i] - out[i - 1]) * k + out[i - 1]
    return out


def rsi(candles: Sequence[Candle], period: int = RSI_PERIOD) -> NDArray[np.float64]:
    """Wilder RSI. A zero average loss counts as 1 to keep the ratio finite."""
    closes = _closes(candles)
    out = np.full(len(closes), np.nan)
    if len(closes) <= period:
        return out

    diffs = np.diff(closes)
    gains = np.where(diffs > 0, diffs, 0.0)
    losses = np.where(diffs < 0, -diffs, 0.0)

    avg_gain = gains[:period].mean()
    avg_loss = losses[:period].mean()
    out[period] = 100 - 100 / (1 + avg_gain / (avg_loss or 1))
    for i in range(period + 1, len(closes)):
        avg_gain = (avg_gain * (period - 1) + gains[i - 1]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i - 1]) / period
        out[i] = 100 - 100 / (1 + avg_gain / (avg_loss or 1))
    return out


def macd_histogram(
    candles: Sequence[Candle],
    fast: int = MACD_FAST,
    slow: int = MACD_SLOW,
    signal: int = MACD_SIGNAL,
) -> NDArray[np.float64]:
    closes = _closes(candles)
    hist = np.full(len(closes), np.nan)
    if len(closes) < slow:
        return hist
    line = ema(closes, fast) - ema(closes, slow)
    valid = ~np.isnan(line)
    signal_line = ema(line[valid], signal)
    hist[valid] = line[valid] - signal_line
    return hist


def stochastic(candles: Sequence[Candle], k_period: int = STOCH_K, d_period: int = STOCH_D) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """(%K, %D). A flat window reads 50."""
    n = len(candles)
    k = np.full(n, np.nan)
    d = np.full(n, np.nan)
    if n < k_period:
        return k, d

    highs = np.array([c.high for c in candles], dtype=float)
    lows = np.array([c.low for c in candles], dtype=float)
    closes = _closes(candles)
    for i in range(k_period - 1, n):
        hh = highs[i - k_period + 1:i + 1].max()
        ll = lows[i - k_period + 1:i + 1].min()
        k[i] = 50.0 if hh == ll else (closes[i] - ll) / (hh - ll) * 100

    for i in range(k_period - 1 + d_period - 1, n):
        d[i] = k[i - d_period + 1:i + 1].mean()
    return k, d


def stochastic_signals(candles: Sequence[Candle]) -> Tuple[StochasticSignal, ...]:
    k, d = stochastic(candles)
    signals = []
    for i in range(1, len(k)):
        if np.isnan(d[i]) or np.isnan(d[i - 1]):
            continue
        if k[i - 1] <= d[i - 1] and k[i] > d[i]:
            signals.append(StochasticSignal(i, "BULLISH_CROSS"))
        elif k[i - 1] >= d[i - 1] and k[i] < d[i]:
            signals.append(StochasticSignal(i, "BEARISH_CROSS"))
        elif k[i] > STOCH_OVERBOUGHT:
            signals.append(StochasticSignal(i, "OVERBOUGHT"))
        elif k[i] < STOCH_OVERSOLD:
            signals.append(StochasticSignal(i, "OVERSOLD"))
    return tuple(signals)


def _last_finite(series: NDArray[np.float64], offset: int = 0) -> Optional[float]:
    finite = series[~np.isnan(series)]
    if len(finite) <= offset:
        return None
    return float(finite[-1 - offset])


def momentum_snapshot(candles: Sequence[Candle]) -> MomentumSnapshot:
    hist = macd_histogram(candles)
    signals = stochastic_signals(candles)
    return MomentumSnapshot(
        rsi=_last_finite(rsi(candles)),
        macd_histogram=_last_finite(hist),
        previous_macd_histogram=_last_finite(hist, 1),
        stochastic_signal=signals[-1].kind if signals else None,
    )


def rsi_divergences(candles: Sequence[Candle], lookback: int = DIVERGENCE_LOOKBACK) -> Tuple[Divergence, ...]:
    """
    Regular divergence between the last two swing lows (bullish) and the
    last two swing highs (bearish): price makes a new extreme that RSI
    does not confirm.
    """
    values = rsi(candles)
    swings = [s for s in detect_swing_points(candles, lookback) if not np.isnan(values[s.index])]
    found = []

    lows = [s for s in swings if s.kind == "LOW"][-2:]
    if len(lows) == 2:
        a, b = lows
        if b.price < a.price and values[b.index] > values[a.index]:
            found.append(Divergence(Bias.BULLISH, "RSI", a.price, b.price))

    highs = [s for s in swings if s.kind == "HIGH"][-2:]
    if len(highs) == 2:
        a, b = highs
        if b.price > a.price and values[b.index] < values[a.index]:
            found.append(Divergence(Bias.BEARISH, "RSI", a.price, b.price))

    return tuple(found)
