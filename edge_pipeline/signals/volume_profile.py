"""
Volume Profile / Auction Theory

Distributes candle volume over price buckets to find where the market
accepted value.

- Point of Control (POC): bucket with the most volume
- Value Area: the 70% of volume grown outward from the POC
- High/Low Volume Nodes: local peaks and valleys of the histogram
- Naked POCs: POCs of earlier daily segments that later trade never revisited

Newer candles weigh more: a candle's volume is scaled from 0.5 (oldest)
up toward 1.0 (newest) before being spread evenly over the buckets its
range touches.
"""

from __future__ import annotations

import statistics
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from ..types import Candle

DEFAULT_ROWS = 40
VALUE_AREA_SHARE = 0.70
MAX_NODES = 5


@dataclass(frozen=True)
class ProfileBucket:
    low: float
    high: float
    volume: float

    @property
    def center(self) -> float:
        return (self.low + self.high) / 2


@dataclass(frozen=True)
class VolumeNode:
    price: float
    volume: float


@dataclass(frozen=True)
class NakedPOC:
    price: float
    day: date


@dataclass(frozen=True)
class VolumeProfile:
    poc: float
    value_area_high: float
    value_area_low: float
    total_volume: float
    buckets: Tuple[ProfileBucket, ...] = ()
    hvns: Tuple[VolumeNode, ...] = ()
    lvns: Tuple[VolumeNode, ...] = ()
    naked_pocs: Tuple[NakedPOC, ...] = ()
    structure_quality: float = 0.5

    def position_of(self, price: float) -> str:
        """'above', 'below' or 'inside' the value area."""
        if price > self.value_area_high:
            return "above"
        if price < self.value_area_low:
            return "below"
        return "inside"


class VolumeProfileEngine:
    """
    Builds volume profiles from candle history.

    Trading implications:
    - Price above VA: acceptance higher, pullbacks toward VA high
    - Price below VA: acceptance lower, rallies toward VA low
    - At POC: balance, wait for a breakout
    - Naked POCs act as magnets until traded through
    """

    def __init__(self, rows: int = DEFAULT_ROWS):
        self.rows = rows

    def build_profile(self, candles: Sequence[Candle]) -> Optional[VolumeProfile]:
        """Profile of ``candles``; None when there is no price range to bucket."""
        if not candles:
            return None

        min_price = min(c.low for c in candles)
        max_price = max(c.high for c in candles)
        step = (max_price - min_price) / self.rows
        if step <= 0:
            return None

        volumes = [0.0] * self.rows
        total_candles = len(candles)
        for index, candle in enumerate(candles):
            time_weight = 0.5 + 0.5 * (index / total_candles)
            weighted = max(candle.volume, 0.0) * time_weight
            start = max(0, int((candle.low - min_price) // step))
            end = min(self.rows - 1, int((candle.high - min_price) // step))
            per_bucket = weighted / (end - start + 1)
            for i in range(start, end + 1):
                volumes[i] += per_bucket

        buckets = tuple(
            ProfileBucket(min_price + i * step, min_price + (i + 1) * step, volumes[i])
            for i in range(self.rows)
        )
        total_volume = sum(volumes)
        if total_volume <= 0:
            return None

        poc_idx = max(range(self.rows), key=lambda i: volumes[i])

        # Start from POC and expand outward
        target_volume = total_volume * VALUE_AREA_SHARE
        va_volume = volumes[poc_idx]
        low_idx = poc_idx
        high_idx = poc_idx
        while va_volume < target_volume and (low_idx > 0 or high_idx < self.rows - 1):
            low_vol = volumes[low_idx - 1] if low_idx > 0 else 0.0
            high_vol = volumes[high_idx + 1] if high_idx < self.rows - 1 else 0.0

            if low_vol >= high_vol and low_idx > 0:
                low_idx -= 1
                va_volume += low_vol
            elif high_idx < self.rows - 1:
                high_idx += 1
                va_volume += high_vol
            else:
                break

        hvns, lvns = self._detect_nodes(buckets)

        # Lower coefficient of variation = more even distribution = better structure
        structure_quality = 0.5
        if len(volumes) > 2:
            mean_vol = statistics.mean(volumes)
            stdev_vol = statistics.stdev(volumes)
            cv = stdev_vol / mean_vol if mean_vol > 0 else 1
            structure_quality = max(0.0, min(1.0, 1 - (cv / 2)))

        return VolumeProfile(
            poc=buckets[poc_idx].center,
            value_area_high=buckets[high_idx].high,
            value_area_low=buckets[low_idx].low,
            total_volume=total_volume,
            buckets=buckets,
            hvns=hvns,
            lvns=lvns,
            naked_pocs=self.naked_pocs(candles),
            structure_quality=structure_quality,
        )

    @staticmethod
    def _detect_nodes(buckets: Sequence[ProfileBucket]) -> Tuple[Tuple[VolumeNode, ...], Tuple[VolumeNode, ...]]:
        hvns: List[VolumeNode] = []
        lvns: List[VolumeNode] = []
        for i in range(2, len(buckets) - 2):
            curr = buckets[i].volume
            neighbours = [buckets[j].volume for j in (i - 2, i - 1, i + 1, i + 2)]
            if all(curr > n for n in neighbours):
                hvns.append(VolumeNode(buckets[i].center, curr))
            if curr > 0 and all(curr < n for n in neighbours):
                lvns.append(VolumeNode(buckets[i].center, curr))
        hvns.sort(key=lambda n: n.volume, reverse=True)
        lvns.sort(key=lambda n: n.volume)
        return tuple(hvns[:MAX_NODES]), tuple(lvns[:MAX_NODES])

    def naked_pocs(self, candles: Sequence[Candle]) -> Tuple[NakedPOC, ...]:
        """
        POCs of completed UTC-day segments that no later segment traded through.

        The current (last) segment is still forming and is not reported.
        """
        segments: Dict[date, List[Candle]] = {}
        for c in candles:
            segments.setdefault(c.timestamp.date(), []).append(c)
        days = sorted(segments)
        if len(days) < 2:
            return ()

        pocs: List[Tuple[date, float]] = []
        for day in days:
            poc = self._segment_poc(segments[day])
            if poc is not None:
                pocs.append((day, poc))

        naked: List[NakedPOC] = []
        for day, poc in pocs[:-1]:
            later = [c for d in days if d > day for c in segments[d]]
            if not any(c.low <= poc <= c.high for c in later):
                naked.append(NakedPOC(poc, day))
        return tuple(naked)

    def _segment_poc(self, candles: Sequence[Candle]) -> Optional[float]:
        min_price = min(c.low for c in candles)
        max_price = max(c.high for c in candles)
        step = (max_price - min_price) / self.rows
        if step <= 0:
            return None
        volumes = [0.0] * self.rows
        for candle in candles:
            start = max(0, int((candle.low - min_price) // step))
            end = min(self.rows - 1, int((candle.high - min_price) // step))
            per_bucket = max(candle.volume, 0.0) / (end - start + 1)
            for i in range(start, end + 1):
                volumes[i] += per_bucket
        poc_idx = max(range(self.rows), key=lambda i: volumes[i])
        return min_price + (poc_idx + 0.5) * step
