"""
Order Flow Reconstruction

Candles carry no tick data, so buying and selling pressure is rebuilt
from candle geometry:

- Close-location delta: the share of the bar between low and close is
  treated as buying, the rest as selling. Summed over time this is the
  cumulative volume delta (CVD).
- Tape pressure: aggressive buying is the body plus the lower wick of an
  up bar (buyers lifting from the lows); aggressive selling is the body
  plus the upper wick of a down bar.

On top of those estimates sit the institutional footprints: absorption
(heavy volume that fails to move price), climax (one-sided volume far
above normal) and relative-volume spikes.

Every function here is pure and degrades to a neutral value on short or
degenerate input.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from ..types import Bias, Candle
from .volatility import simple_range_atr

ORDER_FLOW_WINDOW = 5
MIN_CANDLES = 5

ABSORPTION_VOLUME_MULT = 1.5
ABSORPTION_RANGE_MULT = 0.8
CLIMAX_VOLUME_MULT = 2.0
INSTITUTIONAL_DELTA_SHARE = 0.4

RV_PERIOD = 20
RV_SPIKE = 2.5
RV_SIGNIFICANT = 1.8
RV_ABOVE_AVERAGE = 1.2


@dataclass(frozen=True)
class CandleDelta:
    """Estimated buy / sell split of one candle's volume."""
    buy_volume: float
    sell_volume: float
    volume: float

    @property
    def net(self) -> float:
        return self.buy_volume - self.sell_volume

    @property
    def bias(self) -> Bias:
        if self.net > 0:
            return Bias.BULLISH
        if self.net < 0:
            return Bias.BEARISH
        return Bias.NEUTRAL


@dataclass(frozen=True)
class Absorption:
    direction: Bias
    note: str = "High volume with minimal price movement"


@dataclass(frozen=True)
class Climax:
    direction: Bias
    note: str = "Extreme directional volume peak"


@dataclass(frozen=True)
class OrderFlowSnapshot:
    current_delta: float = 0.0
    net_delta: float = 0.0
    bias: Bias = Bias.NEUTRAL
    intensity: float = 0.0
    absorption: Optional[Absorption] = None
    climax: Optional[Climax] = None
    is_institutional: bool = False
    cvd_bias: Bias = Bias.NEUTRAL


@dataclass(frozen=True)
class VolumeAnalysis:
    relative_volume: float = 1.0
    is_institutional: bool = False
    kind: str = "NEUTRAL"
    sub_kind: str = "PARTICIPATION"
    score: int = 0
    rationale: str = ""


def estimate_delta(candle: Candle) -> CandleDelta:
    """Close-location split of volume; zero-range candles are neutral."""
    rng = candle.range
    if rng <= 0:
        return CandleDelta(0.0, 0.0, candle.volume)
    bull = (candle.close - candle.low) / rng
    bear = (candle.high - candle.close) / rng
    return CandleDelta(candle.volume * bull, candle.volume * bear, candle.volume)


def tape_pressure(candle: Candle) -> CandleDelta:
    """
    Aggressive buy / sell volume from body and wick geometry.

    Up bar: buy share = (body + lower wick) / range.
    Down or flat bar: sell share = (body + upper wick) / range.
    """
    rng = candle.range
    if rng <= 0:
        return CandleDelta(0.0, 0.0, candle.volume)

    if candle.close > candle.open:
        buy_ratio = (candle.body + candle.lower_wick) / rng
    else:
        buy_ratio = 1.0 - (candle.body + candle.upper_wick) / rng

    buy_ratio = min(max(buy_ratio, 0.0), 1.0)
    return CandleDelta(
        candle.volume * buy_ratio,
        candle.volume * (1.0 - buy_ratio),
        candle.volume,
    )


def cumulative_delta(candles: Sequence[Candle]) -> NDArray[np.float64]:
    """Running sum of close-location deltas."""
    if not candles:
        return np.zeros(0)
    deltas = np.array([estimate_delta(c).net for c in candles], dtype=float)
    return np.cumsum(deltas)


def cvd_bias(candles: Sequence[Candle], window: int = 20) -> Bias:
    """Direction of the CVD over the last ``window`` candles."""
    cvd = cumulative_delta(candles)
    if len(cvd) < 2:
        return Bias.NEUTRAL
    recent = cvd[-window:]
    change = float(recent[-1] - recent[0])
    if change > 0:
        return Bias.BULLISH
    if change < 0:
        return Bias.BEARISH
    return Bias.NEUTRAL


def detect_absorption(candle: Candle, recent: Sequence[Candle]) -> Optional[Absorption]:
    """Volume > 1.5x the window average while range < 0.8x the average range."""
    if not recent:
        return None
    avg_volume = sum(c.volume for c in recent) / len(recent)
    avg_range = sum(c.range for c in recent) / len(recent)
    if avg_volume <= 0 or avg_range <= 0:
        return None
    if candle.volume > avg_volume * ABSORPTION_VOLUME_MULT and candle.range < avg_range * ABSORPTION_RANGE_MULT:
        direction = Bias.BULLISH if candle.close > candle.open else Bias.BEARISH
        return Absorption(direction)
    return None


def detect_climax(delta: CandleDelta, avg_volume: float) -> Optional[Climax]:
    """Directional volume above 2x the window average."""
    if avg_volume <= 0:
        return None
    if abs(delta.net) > avg_volume * CLIMAX_VOLUME_MULT:
        return Climax(Bias.BULLISH if delta.net > 0 else Bias.BEARISH)
    return None


def analyze_order_flow(candles: Sequence[Candle]) -> OrderFlowSnapshot:
    """Five-candle order flow read of the most recent history."""
    if len(candles) < MIN_CANDLES:
        return OrderFlowSnapshot()

    recent = list(candles[-ORDER_FLOW_WINDOW:])
    deltas = [estimate_delta(c) for c in recent]
    net_delta = sum(d.net for d in deltas)
    avg_volume = sum(d.volume for d in deltas) / len(deltas)
    last = deltas[-1]

    if avg_volume <= 0:
        return OrderFlowSnapshot(cvd_bias=cvd_bias(candles))

    if net_delta > 0:
        bias = Bias.BULLISH
    elif net_delta < 0:
        bias = Bias.BEARISH
    else:
        bias = Bias.NEUTRAL

    return OrderFlowSnapshot(
        current_delta=last.net,
        net_delta=net_delta,
        bias=bias,
        intensity=abs(net_delta) / avg_volume,
        absorption=detect_absorption(recent[-1], recent),
        climax=detect_climax(last, avg_volume),
        is_institutional=abs(last.net) > avg_volume * INSTITUTIONAL_DELTA_SHARE,
        cvd_bias=cvd_bias(candles),
    )


def detect_institutional_volume(candles: Sequence[Candle], period: int = RV_PERIOD) -> VolumeAnalysis:
    """Relative volume of the last candle against the previous ``period`` candles."""
    if len(candles) < period + 1:
        return VolumeAnalysis()

    window = candles[-(period + 1):]
    last = window[-1]
    avg_volume = sum(c.volume for c in window[:-1]) / period
    if avg_volume <= 0:
        return VolumeAnalysis()

    rv = last.volume / avg_volume
    kind, score, institutional = "NORMAL", 0, False
    if rv > RV_SPIKE:
        kind, score, institutional = "INSTITUTIONAL_SPIKE", 100, True
    elif rv > RV_SIGNIFICANT:
        kind, score, institutional = "SIGNIFICANT", 75, True
    elif rv > RV_ABOVE_AVERAGE:
        kind, score = "ABOVE_AVERAGE", 40

    atr = simple_range_atr(candles, 14)
    sub_kind = "PARTICIPATION"
    if rv > 2.0 and atr > 0:
        if last.range < atr * 0.5:
            sub_kind = "ABSORPTION"
        elif last.range > atr * 2.0:
            sub_kind = "CLIMAX"

    rv_rounded = round(rv, 2)
    if rv > RV_SPIKE:
        rationale = f"Massive institutional spike ({rv_rounded}x RV)"
    elif rv > RV_SIGNIFICANT:
        rationale = f"Significant volume surge ({rv_rounded}x RV)"
    elif rv > RV_ABOVE_AVERAGE:
        rationale = f"Above average volume ({rv_rounded}x RV)"
    else:
        rationale = f"Normal volume levels ({rv_rounded}x RV)"

    return VolumeAnalysis(
        relative_volume=rv_rounded,
        is_institutional=institutional,
        kind=kind,
        sub_kind=sub_kind,
        score=score,
        rationale=rationale,
    )


def momentum_ignition(candles: Sequence[Candle]) -> float:
    """
    Ignition ratio: body expansion times volume surge when both rise.

    Returns 0.0 when the last bar does not accelerate on rising volume.
    """
    if len(candles) < 2:
        return 0.0
    last, prev = candles[-1], candles[-2]
    surge = last.volume / (prev.volume or 1.0)
    if last.body > prev.body and surge > 1.2:
        return (last.body / (prev.body or 1e-5)) * surge
    return 0.0
