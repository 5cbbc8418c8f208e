"""
Trading session and killzone context from an explicit UTC timestamp.

Session windows (UTC, end exclusive, overnight ranges wrap):
    ASIAN   23-08, killzone 00-02
    LONDON  07-16, killzone 08-10
    NY      12-21, killzone 13-15
    OVERLAP 12-16 (London/New York)

Sessions are checked in that order, so the first matching window wins
where they overlap (07:00 is still ASIAN, 12:00 is LONDON).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

import numpy as np

from ..types import Candle

_SESSIONS = (
    ("ASIAN", 23, 8, ("ASIAN_OPEN", 0, 2)),
    ("LONDON", 7, 16, ("LONDON_OPEN", 8, 10)),
    ("NY", 12, 21, ("NY_OPEN", 13, 15)),
)
_OVERLAP = (12, 16)


@dataclass(frozen=True)
class SessionContext:
    session: str  # ASIAN | LONDON | NY | CLOSED
    killzone: Optional[str]
    is_overlap: bool
    hour: int
    minute: int

    @property
    def is_peak_liquidity(self) -> bool:
        return self.is_overlap or self.killzone is not None


def _in_range(hour: int, start: int, end: int) -> bool:
    if start <= end:
        return start <= hour < end
    return hour >= start or hour < end


def to_utc(timestamp: datetime) -> datetime:
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def analyze_session(timestamp: datetime) -> SessionContext:
    """Naive datetimes are taken to be UTC already."""
    ts = to_utc(timestamp)
    hour = ts.hour
    session = "CLOSED"
    killzone: Optional[str] = None

    for name, start, end, (kz_name, kz_start, kz_end) in _SESSIONS:
        if _in_range(hour, start, end):
            session = name
            if _in_range(hour, kz_start, kz_end):
                killzone = kz_name
            break

    is_overlap = _in_range(hour, *_OVERLAP)
    if is_overlap and killzone is None:
        killzone = "OVERLAP"

    return SessionContext(session=session, killzone=killzone, is_overlap=is_overlap, hour=hour, minute=ts.minute)


def session_volatility_is_high(candles: Sequence[Candle], session: str) -> bool:
    """
    True when the mean range of candles printed in ``session`` exceeds 1.5x
    their median range. Needs 50 candles overall and 10 in the session.
    """
    if len(candles) < 50:
        return False
    ranges = [c.range for c in candles if analyze_session(c.timestamp).session == session]
    if len(ranges) < 10:
        return False
    return float(np.mean(ranges)) > float(np.median(ranges)) * 1.5
