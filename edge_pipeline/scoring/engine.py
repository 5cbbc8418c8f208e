"""
Edge Scoring Engine

Folds the ordered scoring rules into one bounded 0-10 score:

    score = clamp(total_points / 100 x 10, 0, 10), one decimal

Every contribution is kept, in rule order, as the audit trail. Identical
(setup, state, reliability) inputs give identical scores and reasons.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Tuple

from ..errors import ensure_finite
from ..market_state import MarketState
from ..performance import StrategyPerformanceTracker
from ..types import EdgeScore, Setup, StrategyReliability
from .rules import RULES, Rule, ScoringContext, evaluate_rules

logger = logging.getLogger(__name__)

SCORE_BANDS = (
    (8.0, "PREMIUM EDGE"),
    (7.0, "STRONG EDGE"),
    (6.0, "TRADABLE"),
    (4.0, "LOW CONVICTION"),
)


def score_label(score: float) -> str:
    for threshold, label in SCORE_BANDS:
        if score >= threshold:
            return label
    return "NO EDGE"


def points_to_score(points: float) -> float:
    raw = max(0.0, min(10.0, points / 100 * 10))
    return math.floor(raw * 10 + 0.5) / 10


class EdgeScoringEngine:
    """
    Scores a setup against a market state.

    When no reliability is passed, one is read from ``tracker`` for the
    setup's strategy id (0.5 probability and neutral weight without one).
    """

    def __init__(
        self,
        tracker: Optional[StrategyPerformanceTracker] = None,
        rules: Tuple[Rule, ...] = RULES,
    ):
        self.tracker = tracker
        self.rules = rules

    def _reliability(self, setup: Setup, reliability: Optional[StrategyReliability]) -> StrategyReliability:
        if reliability is not None:
            return reliability
        if self.tracker is not None:
            return self.tracker.reliability(setup.strategy_id)
        return StrategyReliability()

    def score(
        self,
        setup: Optional[Setup],
        state: MarketState,
        reliability: Optional[StrategyReliability] = None,
    ) -> EdgeScore:
        if setup is None:
            return EdgeScore(score=0.0, label=score_label(0.0), points=0.0, risks=("No active setup",))

        ctx = ScoringContext.build(setup, state, self._reliability(setup, reliability))
        contributions = evaluate_rules(ctx, self.rules)
        points = ensure_finite(float(sum(c.points for c in contributions)), "edge points")
        score = points_to_score(points)

        for c in contributions:
            logger.debug(f"{state.symbol} {setup.strategy_id} {c.rule}: {c.points:+g} {c.reason}")
        logger.debug(f"{state.symbol} {setup.strategy_id} {setup.direction.value}: {points:g} pts -> {score}")

        return EdgeScore(
            score=score,
            label=score_label(score),
            points=points,
            positives=tuple(c.reason for c in contributions if c.is_positive),
            risks=tuple(c.reason for c in contributions if c.is_risk),
            contributions=tuple(contributions),
        )
