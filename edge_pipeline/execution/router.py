"""
Smart Execution Router

Chooses how an order should reach the market from its urgency, its
notional size and the microstructure at the moment of routing.

Routing table:
    HIGH urgency
        spread < 0.1%   -> MARKET (downgraded to LIMIT_CHASE if the
                           walked book slips more than the tolerance)
        spread < 0.3%   -> LIMIT_CHASE
        otherwise       -> LIMIT at mid
    LOW / MEDIUM urgency
        notional > 500k -> TWAP
        notional > 100k -> ICEBERG
        HIGH volatility -> LIMIT_PASSIVE
        otherwise       -> LIMIT

The order-book walk reads one depth snapshot and never re-queries it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..config import RouterConfig
from ..signals.order_book import DepthLevel, DepthSnapshot
from ..types import ExecutionDecision, ExecutionType, OrderSide, Urgency, VolatilityRegime

logger = logging.getLogger(__name__)

EMPTY_BOOK_SLIPPAGE = 0.01
INSUFFICIENT_DEPTH_SLIPPAGE = 0.10


@dataclass(frozen=True)
class OrderIntent:
    symbol: str
    side: OrderSide
    size: float
    urgency: Urgency = Urgency.MEDIUM

    def __post_init__(self) -> None:
        if self.size <= 0:
            raise ValueError(f"Order size must be positive, got {self.size}")
        object.__setattr__(self, "side", OrderSide(self.side))
        object.__setattr__(self, "urgency", Urgency(self.urgency))


@dataclass(frozen=True)
class MicrostructureSnapshot:
    """Price, absolute spread, volatility regime and optional depth at routing time."""
    price: float
    spread: float
    volatility: VolatilityRegime = VolatilityRegime.NORMAL
    depth: Optional[DepthSnapshot] = None

    @property
    def spread_pct(self) -> float:
        if self.price <= 0:
            return 0.0
        return self.spread / self.price

    @property
    def mid(self) -> float:
        if self.depth is not None and self.depth.mid is not None:
            return self.depth.mid
        return self.price


def estimate_slippage(side: OrderSide, size: float, depth: Optional[DepthSnapshot]) -> float:
    """
    Walk the opposing side of the book until ``size`` is filled.

    Returns the fractional distance between the volume-weighted fill price
    and the best price. An empty book returns 1%, a book too thin to fill
    the order returns 10%.
    """
    if depth is None:
        return EMPTY_BOOK_SLIPPAGE
    levels: Sequence[DepthLevel] = depth.asks if side is OrderSide.BUY else depth.bids
    if not levels:
        return EMPTY_BOOK_SLIPPAGE

    best = levels[0].price
    remaining = size
    cost = 0.0
    filled = 0.0
    for level in levels:
        take = min(remaining, level.quantity)
        cost += take * level.price
        filled += take
        remaining -= take
        if remaining <= 0:
            break

    if remaining > 0 or filled <= 0 or best <= 0:
        return INSUFFICIENT_DEPTH_SLIPPAGE

    average = cost / filled
    return abs(average - best) / best


class SmartExecutionRouter:
    """
    Routes one order intent to an execution style.

    Usage:
        router = SmartExecutionRouter()
        decision = router.route(
            OrderIntent("BTCUSDT", OrderSide.BUY, 2.0, Urgency.HIGH),
            MicrostructureSnapshot(price=65000, spread=5, depth=book),
        )
    """

    def __init__(self, config: Optional[RouterConfig] = None):
        self.config = config or RouterConfig()

    def estimate_slippage(self, side: OrderSide, size: float, depth: Optional[DepthSnapshot]) -> float:
        return estimate_slippage(side, size, depth)

    def route(self, intent: OrderIntent, snapshot: MicrostructureSnapshot) -> ExecutionDecision:
        if intent.urgency is Urgency.HIGH:
            decision = self._route_urgent(intent, snapshot)
        else:
            decision = self._route_patient(intent, snapshot)

        logger.info(
            f"Routed {intent.side.value} {intent.size:g} {intent.symbol} "
            f"({intent.urgency.value}) -> {decision.type.value}: {'; '.join(decision.reasons)}"
        )
        return decision

    def _route_urgent(self, intent: OrderIntent, snapshot: MicrostructureSnapshot) -> ExecutionDecision:
        cfg = self.config
        spread_pct = snapshot.spread_pct
        reasons: List[str] = []

        if spread_pct < cfg.market_spread_pct:
            reasons.append("High Urgency + Tight Spread = Market Order")
            if snapshot.depth is not None:
                slippage = estimate_slippage(intent.side, intent.size, snapshot.depth)
                if slippage > cfg.max_slippage_tolerance:
                    reasons.append(f"Estimated Slippage ({slippage * 100:.2f}%) exceeds tolerance.")
                    return ExecutionDecision(
                        ExecutionType.LIMIT_CHASE,
                        {"offset": 0.0, "max_chase": cfg.max_chase, "estimated_slippage": slippage},
                        tuple(reasons),
                    )
            return ExecutionDecision(ExecutionType.MARKET, {}, tuple(reasons))

        if spread_pct < cfg.chase_spread_pct:
            reasons.append("High Urgency + Moderate Spread = Aggressive Limit")
            return ExecutionDecision(
                ExecutionType.LIMIT_CHASE, {"offset": 0.0, "max_chase": cfg.max_chase}, tuple(reasons)
            )

        reasons.append(f"Spread > {cfg.chase_spread_pct * 100:.1f}% - Forced Limit to protect value")
        return ExecutionDecision(ExecutionType.LIMIT, {"price": snapshot.mid}, tuple(reasons))

    def _route_patient(self, intent: OrderIntent, snapshot: MicrostructureSnapshot) -> ExecutionDecision:
        cfg = self.config
        notional = intent.size * snapshot.price

        if notional > cfg.twap_threshold_usd:
            return ExecutionDecision(
                ExecutionType.TWAP,
                {
                    "duration_minutes": cfg.twap_duration_minutes,
                    "slices": cfg.twap_slices,
                    "randomize": True,
                },
                (f"Size (${notional / 1000:.0f}k) exceeds TWAP threshold.",),
            )

        if notional > cfg.iceberg_threshold_usd:
            return ExecutionDecision(
                ExecutionType.ICEBERG,
                {
                    "visible_size": intent.size * cfg.iceberg_visible_pct,
                    "variance": cfg.iceberg_variance,
                },
                (f"Size (${notional / 1000:.0f}k) triggers Iceberg execution.",),
            )

        if snapshot.volatility is VolatilityRegime.HIGH:
            return ExecutionDecision(
                ExecutionType.LIMIT_PASSIVE,
                {"price": snapshot.price},
                ("High Volatility - Using Passive Limit to catch wicks",),
            )

        return ExecutionDecision(ExecutionType.LIMIT, {"price": snapshot.price}, ("Standard Limit Execution",))
