"""
Probability Estimation

Turns a market state into continuation / reversal / consolidation odds.

Each component is a weighted sum of evidence. The weights shift with the
regime: trends lean on higher-timeframe alignment and structure, ranges
lean on volume, magnets and failed-breakout traps. High volatility trusts
the historical prior more and expects more fakeouts.

The raw components are scores on a 0-100 scale; the returned triple is
normalized so it sums to 1.0.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Optional

from .market_state import MarketState
from .types import LiquidityRun, MarketRegime, ProbabilityTriple, StrategyReliability, VolatilityRegime

logger = logging.getLogger(__name__)

MAJOR_LEVEL_PCT = 0.002
OBLIGATION_OVERRIDE_URGENCY = 80
OBLIGATION_REVERSAL_URGENCY = 75
DECAY_HALF_LIFE_SECONDS = 4 * 60 * 60


@dataclass(frozen=True)
class ComponentWeights:
    bayesian: float = 30
    htf: float = 20
    structure: float = 20
    volume: float = 20
    obligation: float = 10
    traps: float = 20


def dynamic_weights(regime: MarketRegime, volatility: VolatilityRegime) -> ComponentWeights:
    if regime is MarketRegime.TRENDING:
        weights = ComponentWeights(bayesian=25, htf=35, structure=25, volume=15, obligation=0)
    elif regime is MarketRegime.RANGING:
        weights = ComponentWeights(bayesian=35, htf=10, structure=15, volume=25, obligation=15, traps=40)
    else:
        weights = ComponentWeights()

    if volatility is VolatilityRegime.HIGH:
        weights = replace(weights, bayesian=40, traps=weights.traps + 10, htf=weights.htf - 5)
    return weights


def confidence_decay(probability: float, elapsed_seconds: float, half_life_seconds: float = DECAY_HALF_LIFE_SECONDS) -> float:
    """Exponential decay of a 0-100 probability since the setup formed."""
    if half_life_seconds <= 0:
        raise ValueError("half_life_seconds must be positive")
    rate = math.log(2) / half_life_seconds
    return max(round(probability * math.exp(-rate * max(elapsed_seconds, 0.0))), 0)


class ProbabilityEstimator:
    """
    Scores the three market outcomes from one state snapshot.

    ``reliability.probability`` is the continuation prior; the reversal
    prior is passed separately and defaults to a coin flip.
    """

    def __init__(self, reversal_prior: float = 0.5):
        self.reversal_prior = reversal_prior

    # ── Components ───────────────────────────────────────────────────

    @staticmethod
    def _htf_bias_weight(state: MarketState) -> float:
        if not state.htf_bias.is_directional:
            return 0.5
        return 1.0 if state.trend is state.htf_bias else 0.2

    @staticmethod
    def _structure_strength(state: MarketState) -> float:
        bos_count = sum(1 for e in state.structure_events if e.kind == "BOS")
        return min(bos_count * 0.25, 1.0)

    @staticmethod
    def _volume_confirmation(state: MarketState) -> float:
        volume = state.volume_analysis
        if volume is None:
            return 0.4
        if volume.is_institutional:
            return 1.0
        return 0.7 if volume.relative_volume > 1.5 else 0.4

    @staticmethod
    def _at_major_level(state: MarketState) -> bool:
        return any(
            pool.equal_levels and abs(pool.price - state.price) / state.price < MAJOR_LEVEL_PCT
            for pool in state.liquidity_pools
        )

    def continuation_score(self, state: MarketState, prior: float) -> float:
        weights = dynamic_weights(state.regime, state.volatility)
        score = prior * weights.bayesian
        score += self._htf_bias_weight(state) * weights.htf
        score += self._structure_strength(state) * weights.structure
        score += self._volume_confirmation(state) * weights.volume

        obligation = state.primary_obligation
        if obligation is not None and obligation.urgency > OBLIGATION_OVERRIDE_URGENCY and weights.obligation > 0:
            if state.trend is obligation.direction_from(state.price):
                score += weights.obligation + 5
            else:
                score -= weights.obligation * 2

        return min(round(score), 100)

    def reversal_score(self, state: MarketState, prior: float) -> float:
        weights = dynamic_weights(state.regime, state.volatility)
        score = prior * weights.bayesian

        if state.divergences:
            score += 15
        if state.volume_analysis is not None and state.volume_analysis.sub_kind == "CLIMAX":
            score += 15
        if self._at_major_level(state):
            score += 10

        # Failed breakouts
        if state.liquidity_sweep is not None:
            score += weights.traps
            if state.liquidity_sweep.confirmed_by_absorption:
                score += 10

        obligation = state.primary_obligation
        if obligation is not None and obligation.urgency > OBLIGATION_REVERSAL_URGENCY:
            if state.trend.is_directional and state.trend is not obligation.direction_from(state.price):
                score += 20

        return min(round(score), 100)

    @staticmethod
    def consolidation_score(state: MarketState) -> float:
        score = 0
        if state.volatility is VolatilityRegime.LOW:
            score += 40
        if state.regime is MarketRegime.RANGING:
            score += 40
        return min(score, 100)

    @staticmethod
    def liquidity_run(state: MarketState) -> Optional[LiquidityRun]:
        obligation = state.primary_obligation
        if obligation is None or "LIQUIDITY" not in obligation.kind:
            return None
        return LiquidityRun(probability=obligation.urgency, target=obligation.price, kind=obligation.kind)

    # ── Public API ───────────────────────────────────────────────────

    def estimate(self, state: MarketState, reliability: Optional[StrategyReliability] = None) -> ProbabilityTriple:
        prior = (reliability or StrategyReliability()).probability
        continuation = self.continuation_score(state, prior)
        reversal = self.reversal_score(state, self.reversal_prior)
        consolidation = self.consolidation_score(state)

        triple = ProbabilityTriple.normalized(
            continuation / 100, reversal / 100, consolidation / 100, self.liquidity_run(state),
            raw=(continuation, reversal, consolidation),
        )
        logger.debug(
            f"{state.symbol} raw cont={continuation} rev={reversal} cons={consolidation} -> "
            f"{triple.continuation:.2f}/{triple.reversal:.2f}/{triple.consolidation:.2f}"
        )
        return triple
