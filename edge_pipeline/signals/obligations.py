"""
Market obligations: what the market still has to do.

Untaken liquidity pools and unmitigated fair value gaps act as magnets.
Each candidate gets an urgency score (0-100); the most urgent one is the
primary obligation.

States:
    OBLIGATED      primary urgency > 70
    FREE_ROAMING   magnets exist but none is compelling
    NO_OBLIGATION  nothing qualifies
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from ..types import Bias
from .structure import FairValueGap, LiquidityPool

POOL_THRESHOLD = 55
GAP_THRESHOLD = 50
GAP_CAP = 90
OBLIGATED_URGENCY = 70
CLUSTER_TOLERANCE = 0.001


@dataclass(frozen=True)
class Obligation:
    kind: str  # BUY_SIDE_LIQUIDITY | SELL_SIDE_LIQUIDITY | IMBALANCE_REPAIR
    price: float
    urgency: float
    description: str

    @property
    def direction(self) -> Bias:
        """Direction price must travel to fulfil a liquidity obligation."""
        if self.kind == "BUY_SIDE_LIQUIDITY":
            return Bias.BULLISH
        if self.kind == "SELL_SIDE_LIQUIDITY":
            return Bias.BEARISH
        return Bias.NEUTRAL

    def direction_from(self, price: float) -> Bias:
        """Direction toward this magnet from ``price``."""
        if self.direction.is_directional:
            return self.direction
        if self.price > price:
            return Bias.BULLISH
        if self.price < price:
            return Bias.BEARISH
        return Bias.NEUTRAL


@dataclass(frozen=True)
class ObligationSet:
    obligations: Tuple[Obligation, ...] = ()
    state: str = "NO_OBLIGATION"

    @property
    def primary(self) -> Optional[Obligation]:
        return self.obligations[0] if self.obligations else None

    @property
    def is_obligated(self) -> bool:
        return self.state == "OBLIGATED"


def score_pool_vulnerability(
    pool: LiquidityPool,
    price: float,
    trend: Bias,
    cluster_levels: Iterable[float] = (),
) -> float:
    """How attractive a pool is to take. Clamped to 0-100."""
    score = 50.0
    dist_pct = abs(price - pool.price) / price * 100 if price else 0.0
    if dist_pct < 0.5:
        score += 25
    elif dist_pct < 2.0:
        score += 10
    elif dist_pct > 5.0:
        score -= 20

    # Equal highs/lows are engineered inducements
    if pool.equal_levels:
        score += 35

    if pool.age > 200:
        score += 15
    elif pool.age > 50:
        score += 5

    with_trend = (trend is Bias.BULLISH and pool.side == "BUY_SIDE") or (
        trend is Bias.BEARISH and pool.side == "SELL_SIDE"
    )
    score += 15 if with_trend else -15

    if any(abs(level - pool.price) / pool.price < CLUSTER_TOLERANCE for level in cluster_levels):
        score += 20

    return min(max(score, 0.0), 100.0)


def score_gap_urgency(gap: FairValueGap, price: float, trend: Bias, candle_count: int) -> float:
    urgency = 40.0
    dist_pct = abs(price - gap.price) / price * 100 if price else 0.0
    if dist_pct < 0.5:
        urgency += 30
    elif dist_pct < 1.5:
        urgency += 10

    age = candle_count - gap.index
    if age < 20:
        urgency += 15
    elif age > 100:
        urgency += 10

    if trend.is_directional and gap.direction is trend:
        urgency += 15
    return urgency


def detect_obligations(
    price: float,
    trend: Bias,
    pools: Sequence[LiquidityPool],
    gaps: Sequence[FairValueGap],
    candle_count: int,
    cluster_levels: Iterable[float] = (),
) -> ObligationSet:
    levels = tuple(cluster_levels)
    found = []

    for pool in pools:
        if pool.swept:
            continue
        score = score_pool_vulnerability(pool, price, trend, levels)
        if score > POOL_THRESHOLD:
            engineered = " (Engineered)" if pool.equal_levels else ""
            found.append(Obligation(
                kind=f"{pool.side}_LIQUIDITY",
                price=pool.price,
                urgency=score,
                description=f"Untaken {pool.side} Liquidity at {pool.price:.5g}{engineered}",
            ))

    for gap in gaps:
        if gap.mitigated:
            continue
        urgency = score_gap_urgency(gap, price, trend, candle_count)
        if urgency > GAP_THRESHOLD:
            found.append(Obligation(
                kind="IMBALANCE_REPAIR",
                price=gap.price,
                urgency=min(urgency, GAP_CAP),
                description=f"Unmitigated {gap.direction.value}_FVG at {gap.price:.5g}",
            ))

    if not found:
        return ObligationSet()

    found.sort(key=lambda o: o.urgency, reverse=True)
    state = "OBLIGATED" if found[0].urgency > OBLIGATED_URGENCY else "FREE_ROAMING"
    return ObligationSet(obligations=tuple(found), state=state)
