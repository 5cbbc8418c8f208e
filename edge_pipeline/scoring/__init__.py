"""
Edge scoring: ordered rules folded into a bounded 0-10 score.
"""

from .engine import EdgeScoringEngine, points_to_score, score_label
from .profiles import TimeframeProfile, profile_for, regime_weights
from .rules import RULES, ScoringContext, evaluate_rules, momentum_points

__all__ = [
    "EdgeScoringEngine",
    "points_to_score",
    "score_label",
    "TimeframeProfile",
    "profile_for",
    "regime_weights",
    "RULES",
    "ScoringContext",
    "evaluate_rules",
    "momentum_points",
]
