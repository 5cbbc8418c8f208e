"""
Timeframe and regime profiles for edge scoring.

The same signal means different things to a scalper and to a swing
trader: killzones matter most on 1-15 minute charts, higher-timeframe
alignment matters most on 4h and above, and the minimum acceptable R:R
grows with the holding period.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..types import MarketRegime


@dataclass(frozen=True)
class TimeframeProfile:
    name: str
    killzone_weight: float
    htf_weight: float
    min_rr: float


SCALPER = TimeframeProfile("SCALPER", killzone_weight=1.3, htf_weight=0.7, min_rr=1.5)
DAY_TRADER = TimeframeProfile("DAY_TRADER", killzone_weight=1.0, htf_weight=1.0, min_rr=2.0)
SWING = TimeframeProfile("SWING", killzone_weight=0.6, htf_weight=1.4, min_rr=3.0)

_TIMEFRAMES = {
    "1m": SCALPER, "5m": SCALPER, "15m": SCALPER,
    "30m": DAY_TRADER, "1h": DAY_TRADER, "2h": DAY_TRADER,
    "4h": SWING, "1d": SWING, "w": SWING, "1w": SWING,
}


def profile_for(timeframe: str) -> TimeframeProfile:
    """Unknown timeframes score as DAY_TRADER."""
    return _TIMEFRAMES.get((timeframe or "1h").strip().lower(), DAY_TRADER)


@dataclass(frozen=True)
class RegimeWeights:
    trend: float = 1.0
    oscillator: float = 1.0


def regime_weights(regime: MarketRegime) -> RegimeWeights:
    # Oscillators fake out in trends; trend alignment means little in ranges
    if regime is MarketRegime.TRENDING:
        return RegimeWeights(trend=1.5, oscillator=0.5)
    if regime is MarketRegime.RANGING:
        return RegimeWeights(trend=0.5, oscillator=1.5)
    return RegimeWeights()
