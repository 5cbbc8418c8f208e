"""
Edge Pipeline

Turns raw candle history into one scored, suppressible trading forecast,
replays that pipeline over history, and picks an execution style for the
resulting orders.

Architecture:
    - signals/: Pure extractors (order flow, volatility, structure, depth, sessions)
    - scoring/: Ordered edge-scoring rules folded into a 0-10 score
    - execution/: Smart order routing, iceberg/chase/TWAP algorithms, guards
    - backtest/: Candle providers, setup detection, simulator, optimizer
    - market_state, probabilities, scenarios, compressor: one evaluation tick
    - pipeline: the tick end to end
"""

__version__ = "0.1.0"

from .pipeline import ForecastPipeline, PipelineResult

__all__ = ["ForecastPipeline", "PipelineResult", "__version__"]
