"""
Market structure from candles.

- Swing points: N-bar fractal highs and lows.
- Structural events: break of structure (BOS) continues the prevailing
  swing direction, change of character (CHoCH) flips it.
- Liquidity pools: resting stops above swing highs (buy-side) and below
  swing lows (sell-side); equal highs/lows mark engineered pools.
- Fair value gaps: three-candle imbalances.
- Order blocks: the last opposing candle before a structural break.
- Liquidity sweeps: a wick through a pool that closes back inside.

Only candles up to the last one supplied are ever read.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from ..types import Bias, Candle

SWING_LOOKBACK = 5
EQUAL_LEVEL_TOLERANCE = 0.001
ORDER_BLOCK_SEARCH = 10
WICK_REJECTION_SHARE = 0.6
MAX_TRACKED = 10


@dataclass(frozen=True)
class SwingPoint:
    index: int
    timestamp: datetime
    price: float
    kind: str  # HIGH | LOW


@dataclass(frozen=True)
class StructureEvent:
    kind: str  # BOS | CHOCH
    direction: Bias
    price: float
    index: int
    timestamp: datetime


@dataclass(frozen=True)
class LiquidityPool:
    price: float
    side: str  # BUY_SIDE (above highs) | SELL_SIDE (below lows)
    index: int
    age: int
    swept: bool = False
    equal_levels: bool = False


@dataclass(frozen=True)
class FairValueGap:
    top: float
    bottom: float
    direction: Bias
    index: int
    mitigated: bool = False

    @property
    def price(self) -> float:
        return (self.top + self.bottom) / 2


@dataclass(frozen=True)
class OrderBlock:
    high: float
    low: float
    direction: Bias
    index: int

    @property
    def midpoint(self) -> float:
        return (self.high + self.low) / 2


@dataclass(frozen=True)
class LiquiditySweep:
    direction: Bias  # direction implied by the sweep (sell-side taken -> BULLISH)
    swept_side: str
    price: float
    confirmed_by_absorption: bool = False

    @property
    def kind(self) -> str:
        return f"{self.direction.value}_SWEEP"


@dataclass(frozen=True)
class ConfluenceZone:
    low: float
    high: float
    direction: Bias

    @property
    def midpoint(self) -> float:
        return (self.low + self.high) / 2


def _suffix_extremes(candles: Sequence[Candle]) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    (max high, min low) of candles strictly after each index.

    The last entry has no later candles and reads -inf / +inf.
    """
    n = len(candles)
    later_high = np.full(n, -np.inf)
    later_low = np.full(n, np.inf)
    if n > 1:
        highs = np.array([c.high for c in candles[1:]], dtype=float)
        lows = np.array([c.low for c in candles[1:]], dtype=float)
        later_high[:-1] = np.maximum.accumulate(highs[::-1])[::-1]
        later_low[:-1] = np.minimum.accumulate(lows[::-1])[::-1]
    return later_high, later_low


def detect_swing_points(candles: Sequence[Candle], lookback: int = SWING_LOOKBACK) -> Tuple[SwingPoint, ...]:
    """Strict fractal swings; a swing needs ``lookback`` candles on both sides."""
    points: List[SwingPoint] = []
    for i in range(lookback, len(candles) - lookback):
        window = range(i - lookback, i + lookback + 1)
        high = candles[i].high
        low = candles[i].low
        if all(candles[j].high < high for j in window if j != i):
            points.append(SwingPoint(i, candles[i].timestamp, high, "HIGH"))
        if all(candles[j].low > low for j in window if j != i):
            points.append(SwingPoint(i, candles[i].timestamp, low, "LOW"))
    points.sort(key=lambda p: p.index)
    return tuple(points)


def detect_structure_events(
    candles: Sequence[Candle],
    swings: Sequence[SwingPoint],
    lookback: int = SWING_LOOKBACK,
) -> Tuple[StructureEvent, ...]:
    """
    Walk forward through closes, breaking the latest confirmed swing.

    A swing is confirmed ``lookback`` candles after it prints. Each swing
    can be broken once.
    """
    events: List[StructureEvent] = []
    trend = Bias.NEUTRAL
    last_high: Optional[SwingPoint] = None
    last_low: Optional[SwingPoint] = None
    pending = sorted(swings, key=lambda p: p.index)
    cursor = 0

    for i, candle in enumerate(candles):
        while cursor < len(pending) and pending[cursor].index + lookback <= i:
            point = pending[cursor]
            if point.kind == "HIGH":
                last_high = point
            else:
                last_low = point
            cursor += 1

        if last_high is not None and candle.close > last_high.price:
            kind = "CHOCH" if trend is Bias.BEARISH else "BOS"
            events.append(StructureEvent(kind, Bias.BULLISH, last_high.price, i, candle.timestamp))
            trend = Bias.BULLISH
            last_high = None
        elif last_low is not None and candle.close < last_low.price:
            kind = "CHOCH" if trend is Bias.BULLISH else "BOS"
            events.append(StructureEvent(kind, Bias.BEARISH, last_low.price, i, candle.timestamp))
            trend = Bias.BEARISH
            last_low = None

    return tuple(events)


def detect_liquidity_pools(candles: Sequence[Candle], swings: Sequence[SwingPoint]) -> Tuple[LiquidityPool, ...]:
    """Pools at swing extremes, flagged as swept once price trades through."""
    if not candles:
        return ()
    last_index = len(candles) - 1
    highs = [s for s in swings if s.kind == "HIGH"]
    lows = [s for s in swings if s.kind == "LOW"]
    later_high, later_low = _suffix_extremes(candles)
    pools: List[LiquidityPool] = []

    for group, side in ((highs, "BUY_SIDE"), (lows, "SELL_SIDE")):
        for swing in group:
            equal = any(
                other is not swing and abs(other.price - swing.price) / swing.price < EQUAL_LEVEL_TOLERANCE
                for other in group
            )
            if side == "BUY_SIDE":
                swept = bool(later_high[swing.index] > swing.price)
            else:
                swept = bool(later_low[swing.index] < swing.price)
            pools.append(LiquidityPool(
                price=swing.price,
                side=side,
                index=swing.index,
                age=last_index - swing.index,
                swept=swept,
                equal_levels=equal,
            ))

    pools.sort(key=lambda p: p.index)
    return tuple(pools[-2 * MAX_TRACKED:])


def detect_fair_value_gaps(candles: Sequence[Candle]) -> Tuple[FairValueGap, ...]:
    gaps: List[FairValueGap] = []
    later_high, later_low = _suffix_extremes(candles)
    for i in range(2, len(candles)):
        first, third = candles[i - 2], candles[i]
        if first.high < third.low:
            bottom, top = first.high, third.low
            mitigated = bool(later_low[i] <= bottom)
            gaps.append(FairValueGap(top, bottom, Bias.BULLISH, i, mitigated))
        elif first.low > third.high:
            bottom, top = third.high, first.low
            mitigated = bool(later_high[i] >= top)
            gaps.append(FairValueGap(top, bottom, Bias.BEARISH, i, mitigated))
    return tuple(gaps[-MAX_TRACKED:])


def detect_order_blocks(candles: Sequence[Candle], events: Sequence[StructureEvent]) -> Tuple[OrderBlock, ...]:
    """Last opposing candle within 10 bars before each structural break."""
    blocks: List[OrderBlock] = []
    for event in events:
        start = max(0, event.index - ORDER_BLOCK_SEARCH)
        for j in range(event.index - 1, start - 1, -1):
            c = candles[j]
            if event.direction is Bias.BULLISH and c.close < c.open:
                blocks.append(OrderBlock(c.high, c.low, Bias.BULLISH, j))
                break
            if event.direction is Bias.BEARISH and c.close > c.open:
                blocks.append(OrderBlock(c.high, c.low, Bias.BEARISH, j))
                break
    return tuple(blocks[-MAX_TRACKED:])


def detect_liquidity_sweep(
    candles: Sequence[Candle],
    pools: Sequence[LiquidityPool],
    absorption_direction: Bias = Bias.NEUTRAL,
) -> Optional[LiquiditySweep]:
    """Last candle wicks through an unswept-until-now pool and closes back inside."""
    if not candles:
        return None
    last = candles[-1]
    last_index = len(candles) - 1
    for pool in sorted(pools, key=lambda p: p.index, reverse=True):
        if pool.index >= last_index:
            continue
        prior = candles[pool.index + 1:last_index]
        if pool.side == "BUY_SIDE":
            if any(c.high > pool.price for c in prior):
                continue
            if last.high > pool.price and last.close < pool.price:
                return LiquiditySweep(
                    Bias.BEARISH, pool.side, pool.price,
                    confirmed_by_absorption=absorption_direction is Bias.BEARISH,
                )
        else:
            if any(c.low < pool.price for c in prior):
                continue
            if last.low < pool.price and last.close > pool.price:
                return LiquiditySweep(
                    Bias.BULLISH, pool.side, pool.price,
                    confirmed_by_absorption=absorption_direction is Bias.BULLISH,
                )
    return None


def wick_rejection(candle: Optional[Candle]) -> Optional[Bias]:
    """A wick longer than 60% of the range rejects in the opposite direction."""
    if candle is None or candle.range <= 0:
        return None
    if candle.upper_wick > candle.range * WICK_REJECTION_SHARE:
        return Bias.BEARISH
    if candle.lower_wick > candle.range * WICK_REJECTION_SHARE:
        return Bias.BULLISH
    return None


def confluence_zones(
    order_blocks: Sequence[OrderBlock],
    gaps: Sequence[FairValueGap],
) -> Tuple[ConfluenceZone, ...]:
    """Overlaps between same-direction order blocks and unmitigated gaps."""
    zones: List[ConfluenceZone] = []
    for ob in order_blocks:
        for gap in gaps:
            if gap.mitigated or gap.direction is not ob.direction:
                continue
            low = max(ob.low, gap.bottom)
            high = min(ob.high, gap.top)
            if low < high:
                zones.append(ConfluenceZone(low, high, ob.direction))
    return tuple(zones)
