"""
Forecast pipeline: one evaluation tick end to end.

    candles -> MarketState -> Setups -> EdgeScores -> probabilities
            -> scenarios -> compressed Prediction (or a Suppression)

The evaluation time is the last candle's timestamp, so identical inputs
always give identical results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .backtest.setups import SetupDetector
from .compressor import PredictionCompressor
from .config import PipelineConfig
from .market_state import ExternalContext, MarketState, MarketStateBuilder
from .performance import StrategyPerformanceTracker
from .probabilities import ProbabilityEstimator
from .scenarios import ScenarioEngine
from .scoring import EdgeScoringEngine
from .types import Candle, CompressionResult, EdgeScore, ProbabilityTriple, ScenarioSet, Setup, StrategyReliability

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    state: MarketState
    setups: Tuple[Setup, ...]
    scores: Tuple[EdgeScore, ...]
    probabilities: ProbabilityTriple
    scenarios: ScenarioSet
    compression: CompressionResult

    @property
    def best_setup(self) -> Optional[Setup]:
        return self.setups[0] if self.setups else None


class ForecastPipeline:
    """
    Usage:
        pipeline = ForecastPipeline()
        result = pipeline.evaluate("EURUSD", "1h", candles)
        if not result.compression.is_suppressed:
            print(result.compression.prediction.bias, result.compression.prediction.target)
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        tracker: Optional[StrategyPerformanceTracker] = None,
        builder: Optional[MarketStateBuilder] = None,
        detector: Optional[SetupDetector] = None,
    ):
        self.config = config or PipelineConfig()
        self.tracker = tracker or StrategyPerformanceTracker()
        self.builder = builder or MarketStateBuilder()
        self.detector = detector or SetupDetector()
        self.scorer = EdgeScoringEngine(tracker=self.tracker)
        self.estimator = ProbabilityEstimator()
        self.scenario_engine = ScenarioEngine(self.config.scenario)
        self.compressor = PredictionCompressor(self.scorer)

    def record_outcome(self, strategy_id: str, is_win: bool) -> None:
        """Feed a closed trade back into strategy reliability."""
        self.tracker.record(strategy_id, is_win)

    def evaluate(
        self,
        symbol: str,
        timeframe: str,
        candles: Sequence[Candle],
        context: Optional[ExternalContext] = None,
    ) -> PipelineResult:
        state = self.builder.build(symbol, timeframe, candles, context)

        scored: List[Tuple[Setup, EdgeScore]] = [
            (setup, self.scorer.score(setup, state)) for setup in self.detector.detect(state)
        ]
        # Best first; equal points keep detection order
        scored.sort(key=lambda pair: -pair[1].points)
        setups = tuple(s for s, _ in scored)
        scores = tuple(e for _, e in scored)

        reliability: Optional[StrategyReliability] = None
        if setups:
            reliability = self.tracker.reliability(setups[0].strategy_id)

        probabilities = self.estimator.estimate(state, reliability)
        scenarios = self.scenario_engine.generate_scenarios(state, setups, scores)
        compression = self.compressor.compress(state, setups, probabilities, reliability)

        logger.debug(
            f"{symbol} {timeframe}: {len(setups)} setups, primary scenario {scenarios.primary.label} "
            f"({scenarios.primary.probability:.2f})"
        )
        return PipelineResult(
            state=state,
            setups=setups,
            scores=scores,
            probabilities=probabilities,
            scenarios=scenarios,
            compression=compression,
        )
