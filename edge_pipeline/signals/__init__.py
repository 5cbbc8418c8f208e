"""
Signal extractors for the edge pipeline.

Each module is a set of pure functions over a candle sequence (or an
order book snapshot). Short or degenerate input yields neutral values,
never exceptions.
"""

from .icebergs import Iceberg, detect_icebergs, strongest_iceberg
from .indicators import MomentumSnapshot, momentum_snapshot, rsi_divergences
from .obligations import Obligation, ObligationSet, detect_obligations
from .order_book import DepthLevel, DepthSnapshot, LiquidityMapDetector, analyze_depth
from .order_flow import analyze_order_flow, detect_institutional_volume, estimate_delta, tape_pressure
from .session import SessionContext, analyze_session
from .volatility import average_true_range, classify_volatility, velocity
from .volume_profile import VolumeProfile, VolumeProfileEngine

__all__ = [
    "Iceberg",
    "detect_icebergs",
    "strongest_iceberg",
    "MomentumSnapshot",
    "momentum_snapshot",
    "rsi_divergences",
    "Obligation",
    "ObligationSet",
    "detect_obligations",
    "DepthLevel",
    "DepthSnapshot",
    "LiquidityMapDetector",
    "analyze_depth",
    "analyze_order_flow",
    "detect_institutional_volume",
    "estimate_delta",
    "tape_pressure",
    "SessionContext",
    "analyze_session",
    "average_true_range",
    "classify_volatility",
    "velocity",
    "VolumeProfile",
    "VolumeProfileEngine",
]
