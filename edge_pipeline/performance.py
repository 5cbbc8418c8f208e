"""
Strategy performance and engine alpha tracking.

Two feedback loops close the gap between forecasts and outcomes:

1. StrategyPerformanceTracker - per-strategy wins, losses and streaks.
   Produces a dynamic weight in [0.5, 1.5]: hot hands are boosted,
   cold streaks are penalized faster than they are rewarded.

2. AlphaTracker - attributes closed trades to the analytical engines
   that were active at entry and grades each engine:

       INSTITUTIONAL  win rate > 70% with >= 10 samples
       HIGH_ALPHA     win rate > 60%
       STABLE         win rate > 45%
       DEGRADING      otherwise

   Engines that degrade inside their known hazard conditions are
   reported as alpha leaks.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .types import MarketRegime, StrategyReliability, VolatilityRegime

logger = logging.getLogger(__name__)

RECENT_WINDOW = 20
MIN_RESULTS_FOR_RATE = 5
MIN_WEIGHT = 0.5
MAX_WEIGHT = 1.5


@dataclass
class StrategyStats:
    """Mutable running record for one strategy."""
    wins: int = 0
    losses: int = 0
    streak: int = 0
    recent: Deque[int] = field(default_factory=lambda: deque(maxlen=RECENT_WINDOW))

    @property
    def win_rate(self) -> float:
        if not self.recent:
            return 0.5
        return sum(self.recent) / len(self.recent)

    @property
    def total(self) -> int:
        return self.wins + self.losses


class StrategyPerformanceTracker:
    """In-memory win/loss record per strategy id."""

    def __init__(self) -> None:
        self._stats: Dict[str, StrategyStats] = {}

    def _get(self, strategy_id: str) -> StrategyStats:
        return self._stats.setdefault(strategy_id, StrategyStats())

    def stats(self, strategy_id: str) -> StrategyStats:
        return self._get(strategy_id)

    def record(self, strategy_id: str, is_win: bool) -> None:
        stats = self._get(strategy_id)
        if is_win:
            stats.wins += 1
            stats.streak = stats.streak + 1 if stats.streak >= 0 else 1
        else:
            stats.losses += 1
            stats.streak = stats.streak - 1 if stats.streak <= 0 else -1
        stats.recent.append(1 if is_win else 0)
        logger.debug(
            f"{strategy_id}: streak={stats.streak} win_rate={stats.win_rate:.0%} "
            f"({stats.wins}W/{stats.losses}L)"
        )

    def dynamic_weight(self, strategy_id: str) -> float:
        """
        1.0 baseline; +0.2 on a 3+ win streak, -0.2 on a 2+ loss streak;
        after 5 results, +0.1 at >= 70% and -0.2 at <= 30% recent win rate.
        """
        stats = self._get(strategy_id)
        multiplier = 1.0

        if stats.streak >= 3:
            multiplier += 0.2
        if stats.streak <= -2:
            multiplier -= 0.2

        if len(stats.recent) >= MIN_RESULTS_FOR_RATE:
            if stats.win_rate >= 0.7:
                multiplier += 0.1
            if stats.win_rate <= 0.3:
                multiplier -= 0.2

        return min(max(multiplier, MIN_WEIGHT), MAX_WEIGHT)

    def reliability(self, strategy_id: str, probability: Optional[float] = None) -> StrategyReliability:
        """
        Reliability handed to the scorer. ``probability`` defaults to the
        recent win rate (0.5 with no history).
        """
        prob = self._get(strategy_id).win_rate if probability is None else probability
        return StrategyReliability(probability=prob, dynamic_weight=self.dynamic_weight(strategy_id))


@dataclass(frozen=True)
class EngineAlpha:
    win_rate: float  # 0-1
    sample_size: int
    impact_score: float
    status: str  # INSTITUTIONAL | HIGH_ALPHA | STABLE | DEGRADING


@dataclass(frozen=True)
class AlphaLeak:
    engine: str
    severity: str  # HIGH | MEDIUM
    warning: str


@dataclass(frozen=True)
class AlphaSnapshot:
    stats: Mapping[str, EngineAlpha] = field(default_factory=dict)
    leaks: Tuple[AlphaLeak, ...] = ()


@dataclass(frozen=True)
class AttributedTrade:
    pnl: float
    engines: FrozenSet[str]

    @property
    def is_win(self) -> bool:
        return self.pnl > 0


# Conditions under which an engine historically gives false alpha.
HAZARD_CONDITIONS: Dict[str, Tuple[Tuple[MarketRegime, VolatilityRegime], ...]] = {
    "FVG": ((MarketRegime.RANGING, VolatilityRegime.HIGH),),
    "SMT": ((MarketRegime.TRENDING, VolatilityRegime.HIGH),),
    "ORDER_BOOK": (
        (MarketRegime.TRENDING, VolatilityRegime.HIGH),
        (MarketRegime.RANGING, VolatilityRegime.HIGH),
    ),
    "AMD_CYCLE": ((MarketRegime.TRENDING, VolatilityRegime.LOW),),
    "MARKET_OBLIGATION": ((MarketRegime.TRENDING, VolatilityRegime.HIGH),),
}


def engine_status(win_rate: float, sample_size: int) -> str:
    if win_rate > 0.7 and sample_size >= 10:
        return "INSTITUTIONAL"
    if win_rate > 0.6:
        return "HIGH_ALPHA"
    if win_rate > 0.45:
        return "STABLE"
    return "DEGRADING"


class AlphaTracker:
    """Correlates engine presence at entry with trade outcomes."""

    def __init__(self, history: int = 500):
        self._trades: Deque[AttributedTrade] = deque(maxlen=history)

    def __len__(self) -> int:
        return len(self._trades)

    def attribute(self, pnl: float, engines: Iterable[str]) -> AttributedTrade:
        trade = AttributedTrade(pnl=pnl, engines=frozenset(e.upper() for e in engines))
        self._trades.append(trade)
        return trade

    def reliability(self) -> Dict[str, EngineAlpha]:
        """Per-engine grades. Impact = win rate x (1 + log10(samples))."""
        buckets: Dict[str, List[AttributedTrade]] = {}
        for trade in self._trades:
            for engine in trade.engines:
                buckets.setdefault(engine, []).append(trade)

        stats: Dict[str, EngineAlpha] = {}
        for engine in sorted(buckets):
            trades = buckets[engine]
            wins = sum(1 for t in trades if t.is_win)
            win_rate = wins / len(trades)
            stats[engine] = EngineAlpha(
                win_rate=win_rate,
                sample_size=len(trades),
                impact_score=round(win_rate * (1 + math.log10(len(trades))), 2),
                status=engine_status(win_rate, len(trades)),
            )
        return stats

    @staticmethod
    def detect_decay(stats: Mapping[str, EngineAlpha]) -> List[str]:
        return [
            engine for engine, alpha in stats.items()
            if alpha.status == "DEGRADING" and alpha.sample_size > 5
        ]

    @staticmethod
    def detect_leaks(
        stats: Mapping[str, EngineAlpha],
        regime: MarketRegime,
        volatility: VolatilityRegime,
    ) -> Tuple[AlphaLeak, ...]:
        condition = (regime, volatility)
        label = f"{regime.value}/{volatility.value}"
        leaks: List[AlphaLeak] = []
        for engine, alpha in stats.items():
            if condition not in HAZARD_CONDITIONS.get(engine, ()):
                continue
            if alpha.status == "DEGRADING":
                leaks.append(AlphaLeak(
                    engine, "HIGH", f"Alpha Leak: {engine} reliability significantly degraded in {label} conditions.",
                ))
            else:
                leaks.append(AlphaLeak(
                    engine, "MEDIUM", f"Caution: {engine} historically shows lower alpha in {label} conditions.",
                ))
        return tuple(leaks)

    def snapshot(self, regime: MarketRegime, volatility: VolatilityRegime) -> AlphaSnapshot:
        stats = self.reliability()
        decaying = self.detect_decay(stats)
        if decaying:
            logger.warning(f"Alpha decay in engines: {', '.join(decaying)}")
        return AlphaSnapshot(stats=stats, leaks=self.detect_leaks(stats, regime, volatility))
