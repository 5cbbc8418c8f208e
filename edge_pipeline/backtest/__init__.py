"""
Backtesting: candle providers, default setup detection, the sliding-window
simulator, trade statistics and the SL/TP grid optimizer.
"""

from .analytics import BacktestStats, max_drawdown, optimization_score, profit_factor, sharpe_ratio, win_rate
from .data import (
    CandleProvider,
    CSVCandleProvider,
    InMemoryCandleProvider,
    SyntheticCandleProvider,
    timeframe_delta,
)
from .engine import BacktestEngine, BacktestOverrides, BacktestResult, FactorAttribution, SignalEntry
from .optimizer import GridOptimizer, OptimizationCell, OptimizationResult, frange
from .setups import SetupDetector

__all__ = [
    "BacktestStats",
    "max_drawdown",
    "optimization_score",
    "profit_factor",
    "sharpe_ratio",
    "win_rate",
    "CandleProvider",
    "CSVCandleProvider",
    "InMemoryCandleProvider",
    "SyntheticCandleProvider",
    "timeframe_delta",
    "BacktestEngine",
    "BacktestOverrides",
    "BacktestResult",
    "FactorAttribution",
    "SignalEntry",
    "GridOptimizer",
    "OptimizationCell",
    "OptimizationResult",
    "frange",
    "SetupDetector",
]
