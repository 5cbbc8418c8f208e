"""
Iceberg / whale wall detection.

Hidden size shows up on candles as repeated closes against the same price
level on heavy volume with little displacement. Prices are quantized to a
grid of 20% of ATR; a level touched at least three times with cumulative
volume above five times the average candle volume is reported.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from ..types import Bias, Candle
from .volatility import simple_range_atr

ICEBERG_LOOKBACK = 10
ICEBERG_MIN_TOUCHES = 3
ICEBERG_VOLUME_MULT = 5.0
ICEBERG_TOLERANCE_ATR = 0.2


@dataclass(frozen=True)
class Iceberg:
    price: float
    side: str  # BUY_ICEBERG | SELL_ICEBERG
    volume: float
    touches: int
    strength: float  # multiple of average candle volume

    @property
    def supports(self) -> Bias:
        """Passive buyers hold up longs; passive sellers cap them."""
        return Bias.BULLISH if self.side == "BUY_ICEBERG" else Bias.BEARISH


def _quantize(price: float, step: float) -> float:
    return round(price / step) * step


def detect_icebergs(candles: Sequence[Candle]) -> Tuple[Iceberg, ...]:
    """All iceberg candidates, strongest (by volume) first."""
    if len(candles) < ICEBERG_LOOKBACK:
        return ()

    threshold = simple_range_atr(candles, 14) * ICEBERG_TOLERANCE_ATR
    if threshold <= 0:
        return ()

    # (side, level) -> [volume, touches]
    levels: Dict[Tuple[str, float], list] = {}
    for c in candles[-ICEBERG_LOOKBACK:]:
        if abs(c.high - c.close) < threshold:
            key = ("SELL_ICEBERG", _quantize(c.high, threshold))
            stats = levels.setdefault(key, [0.0, 0])
            stats[0] += c.volume
            stats[1] += 1
        if abs(c.close - c.low) < threshold:
            key = ("BUY_ICEBERG", _quantize(c.low, threshold))
            stats = levels.setdefault(key, [0.0, 0])
            stats[0] += c.volume
            stats[1] += 1

    avg_volume = sum(c.volume for c in candles) / len(candles)
    if avg_volume <= 0:
        return ()

    found = [
        Iceberg(
            price=level,
            side=side,
            volume=volume,
            touches=touches,
            strength=round(volume / avg_volume, 1),
        )
        for (side, level), (volume, touches) in levels.items()
        if touches >= ICEBERG_MIN_TOUCHES and volume > avg_volume * ICEBERG_VOLUME_MULT
    ]
    found.sort(key=lambda ice: ice.volume, reverse=True)
    return tuple(found)


def strongest_iceberg(candles: Sequence[Candle]) -> Optional[Iceberg]:
    found = detect_icebergs(candles)
    return found[0] if found else None
