"""Candle fixtures for signal extractor tests."""

from datetime import datetime, timedelta, timezone
from typing import List, Sequence

from edge_pipeline.types import Candle

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def candle(i: int, open_: float, high: float, low: float, close: float, volume: float = 1000.0) -> Candle:
    """Hourly candle ``i`` bars after START."""
    return Candle(START + timedelta(hours=i), open_, high, low, close, volume)


def flat_bars(closes: Sequence[float], half_range: float = 0.5, volume: float = 1000.0) -> List[Candle]:
    """Doji bars (open == close) centred on each close."""
    return [candle(i, c, c + half_range, c - half_range, c, volume) for i, c in enumerate(closes)]


def from_closes(closes: Sequence[float], wick: float = 0.5, volume: float = 1000.0) -> List[Candle]:
    """Bars that open at the previous close."""
    bars = []
    prev = closes[0]
    for i, c in enumerate(closes):
        bars.append(candle(i, prev, max(prev, c) + wick, min(prev, c) - wick, c, volume))
        prev = c
    return bars
