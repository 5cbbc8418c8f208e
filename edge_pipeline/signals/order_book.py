"""
Order book depth analysis and the liquidity map.

Depth arrives as plain data (bids and asks of price/quantity levels). The
stateless helpers read a single snapshot; ``LiquidityMapDetector`` is the
one stateful piece, owning the previous snapshot so that consecutive
updates can be diffed for pulled or flashed liquidity.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ..types import Bias

logger = logging.getLogger(__name__)

WALL_MULT = 3.0
CLUSTER_MULT = 4.0
IMBALANCE_RANGE_PCT = 0.02
PRESSURE_THRESHOLD = 0.2
MAP_LEVELS = 50
PULSE_DROP = 0.5
FLASH_CHANGE = 3.0


@dataclass(frozen=True)
class DepthLevel:
    price: float
    quantity: float


@dataclass(frozen=True)
class DepthSnapshot:
    """Bids best-first (descending price), asks best-first (ascending price)."""
    bids: Tuple[DepthLevel, ...] = ()
    asks: Tuple[DepthLevel, ...] = ()

    @classmethod
    def from_mapping(cls, data: Dict[str, Sequence[Dict[str, float]]]) -> "DepthSnapshot":
        """Build from ``{"bids": [{"price", "quantity"}], "asks": [...]}``."""
        bids = tuple(DepthLevel(float(b["price"]), float(b["quantity"])) for b in data.get("bids", ()))
        asks = tuple(DepthLevel(float(a["price"]), float(a["quantity"])) for a in data.get("asks", ()))
        return cls(bids=bids, asks=asks)

    @property
    def is_empty(self) -> bool:
        return not self.bids and not self.asks

    @property
    def best_bid(self) -> Optional[float]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[float]:
        return self.asks[0].price if self.asks else None

    @property
    def mid(self) -> Optional[float]:
        if self.best_bid is None or self.best_ask is None:
            return None
        return (self.best_bid + self.best_ask) / 2

    @property
    def spread(self) -> Optional[float]:
        if self.best_bid is None or self.best_ask is None:
            return None
        return self.best_ask - self.best_bid


@dataclass(frozen=True)
class DepthWall:
    price: float
    quantity: float
    side: str  # BUY | SELL
    strength: float


@dataclass(frozen=True)
class DepthAnalysis:
    imbalance: float = 0.0
    walls: Tuple[DepthWall, ...] = ()
    pressure: Bias = Bias.NEUTRAL
    summary: str = ""


@dataclass(frozen=True)
class LiquidityLevel:
    price: float
    quantity: float
    side: str  # BID | ASK
    intensity: float
    kind: str  # WALL | CLUSTER | THIN


@dataclass(frozen=True)
class LiquidityPulse:
    price: float
    side: str
    kind: str  # LIQUIDITY_FLASH_REMOVAL | FLASH_FILL
    magnitude: float


def _find_walls(levels: Sequence[DepthLevel], side: str) -> List[DepthWall]:
    if not levels:
        return []
    avg = sum(l.quantity for l in levels) / len(levels)
    if avg <= 0:
        return []
    walls = [
        DepthWall(l.price, l.quantity, side, l.quantity / avg)
        for l in levels
        if l.quantity > avg * WALL_MULT
    ]
    walls.sort(key=lambda w: w.quantity, reverse=True)
    return walls[:3]


def depth_imbalance(depth: DepthSnapshot, price: float, range_abs: Optional[float] = None) -> float:
    """(bid - ask) / (bid + ask) volume within ``range_abs`` of ``price``; 0 when empty."""
    window = range_abs if range_abs is not None else price * IMBALANCE_RANGE_PCT
    bid_vol = sum(b.quantity for b in depth.bids if b.price >= price - window)
    ask_vol = sum(a.quantity for a in depth.asks if a.price <= price + window)
    total = bid_vol + ask_vol
    if total <= 0:
        return 0.0
    return (bid_vol - ask_vol) / total


def analyze_depth(depth: Optional[DepthSnapshot], price: float) -> DepthAnalysis:
    if depth is None or depth.is_empty:
        return DepthAnalysis()

    bid_walls = _find_walls(depth.bids, "BUY")
    ask_walls = _find_walls(depth.asks, "SELL")
    imbalance = depth_imbalance(depth, price)

    if imbalance > PRESSURE_THRESHOLD:
        pressure = Bias.BULLISH
    elif imbalance < -PRESSURE_THRESHOLD:
        pressure = Bias.BEARISH
    else:
        pressure = Bias.NEUTRAL

    side = "bullish" if imbalance > 0 else "bearish"
    wall_count = len(bid_walls) + len(ask_walls)
    wall_note = f" with {wall_count} significant walls detected" if wall_count else ""
    summary = f"Order book shows a {abs(imbalance) * 100:.1f}% {side} imbalance{wall_note}."

    return DepthAnalysis(
        imbalance=imbalance,
        walls=tuple(bid_walls + ask_walls),
        pressure=pressure,
        summary=summary,
    )


def depth_alignment_bonus(direction: Bias, analysis: Optional[DepthAnalysis]) -> int:
    """0-10 points when book pressure agrees with the trade direction."""
    if analysis is None or not direction.is_directional or analysis.pressure is not direction:
        return 0
    return min(10, math.floor(abs(analysis.imbalance) * 20))


def find_clusters(depth: Optional[DepthSnapshot]) -> Tuple[Tuple[DepthWall, ...], Tuple[DepthWall, ...]]:
    """(buy clusters, sell clusters): levels above 4x their side's average."""
    if depth is None or depth.is_empty:
        return (), ()

    def side_clusters(levels: Sequence[DepthLevel], side: str) -> Tuple[DepthWall, ...]:
        if not levels:
            return ()
        avg = sum(l.quantity for l in levels) / len(levels)
        if avg <= 0:
            return ()
        return tuple(
            DepthWall(l.price, l.quantity, side, l.quantity / avg)
            for l in levels
            if l.quantity > avg * CLUSTER_MULT
        )

    return side_clusters(depth.bids, "BUY"), side_clusters(depth.asks, "SELL")


def liquidity_map(depth: Optional[DepthSnapshot]) -> Tuple[LiquidityLevel, ...]:
    """Heat map of the top 50 levels per side, normalized to the largest level."""
    if depth is None or depth.is_empty:
        return ()
    bids = depth.bids[:MAP_LEVELS]
    asks = depth.asks[:MAP_LEVELS]
    global_max = max(l.quantity for l in bids + asks)
    if global_max <= 0:
        return ()

    def level(l: DepthLevel, side: str) -> LiquidityLevel:
        intensity = l.quantity / global_max
        kind = "WALL" if intensity > 0.8 else "CLUSTER" if intensity > 0.4 else "THIN"
        return LiquidityLevel(l.price, l.quantity, side, intensity, kind)

    return tuple([level(b, "BID") for b in bids] + [level(a, "ASK") for a in asks])


@dataclass
class LiquidityMapDetector:
    """
    Diffs consecutive depth snapshots for pulled (spoofed) or flashed liquidity.

    The previous snapshot is instance state, so two detectors watching two
    books never interfere.
    """

    pulse_drop: float = PULSE_DROP
    flash_change: float = FLASH_CHANGE
    _previous: Optional[DepthSnapshot] = field(default=None, repr=False)

    def reset(self) -> None:
        self._previous = None

    def update(self, depth: DepthSnapshot) -> Tuple[LiquidityPulse, ...]:
        """Compare against the last snapshot, then remember this one."""
        previous, self._previous = self._previous, depth
        if previous is None:
            return ()

        pulses: List[LiquidityPulse] = []
        for side, current_levels, prev_levels in (
            ("BUY", depth.bids, previous.bids),
            ("SELL", depth.asks, previous.asks),
        ):
            prev_by_price = {l.price: l.quantity for l in prev_levels}
            for level in current_levels:
                prev_qty = prev_by_price.get(level.price)
                if not prev_qty:
                    continue
                change = (level.quantity - prev_qty) / prev_qty
                if level.quantity < prev_qty * (1 - self.pulse_drop):
                    pulses.append(LiquidityPulse(
                        level.price, side, "LIQUIDITY_FLASH_REMOVAL", (prev_qty - level.quantity) / prev_qty,
                    ))
                elif change > self.flash_change:
                    pulses.append(LiquidityPulse(level.price, side, "FLASH_FILL", change))

        if pulses:
            logger.debug(f"Liquidity pulses detected: {len(pulses)}")
        return tuple(pulses)
