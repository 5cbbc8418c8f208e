"""
Pre-trade execution guards.

A guard never silently skips a trade: ``check`` returns every failing
reason and ``enforce`` raises ``ExecutionGuardTriggered`` carrying them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..errors import ExecutionGuardTriggered
from ..market_state import NewsShock
from ..signals.session import to_utc
from ..types import Bias, Candle, Prediction, Setup

logger = logging.getLogger(__name__)

ROLLOVER_HOURS_UTC = (21, 22, 0)
VOLATILITY_THRESHOLD = 0.02
SLIPPAGE_MULTIPLIER = 1.5
HAZARD_LOOKBACK = 5
MAX_SECTOR_POSITIONS = 3
MAX_NET_EXPOSURE = 3
MIN_EDGE_SCORE = 7.0

_FX_CODES = ("EUR", "GBP", "JPY", "AUD", "USD", "DXY")


@dataclass(frozen=True)
class OpenPosition:
    symbol: str
    direction: Bias

    def __post_init__(self) -> None:
        object.__setattr__(self, "direction", Bias.parse(self.direction))


@dataclass(frozen=True)
class GuardDecision:
    approved: bool
    reasons: Tuple[str, ...] = ()


def asset_class(symbol: str) -> str:
    """Coarse sector bucket used for concentration limits."""
    upper = symbol.upper()
    if "USDT" in upper:
        return "CRYPTO"
    if any(code in upper for code in _FX_CODES):
        return "FOREX"
    return "EQUITY"


class ExecutionGuard:
    """
    Safety lock in front of order placement.

    Checks, in order: execution hazards on the recent candles, portfolio
    concentration, then the prediction itself.
    """

    def __init__(
        self,
        volatility_threshold: float = VOLATILITY_THRESHOLD,
        min_edge_score: float = MIN_EDGE_SCORE,
        session_based: bool = True,
    ):
        self.volatility_threshold = volatility_threshold
        self.min_edge_score = min_edge_score
        self.session_based = session_based

    def hazards(self, candles: Sequence[Candle], news_shock: Optional[NewsShock] = None) -> List[str]:
        found: List[str] = []
        if not candles:
            return found

        last = candles[-1]
        if self.session_based and to_utc(last.timestamp).hour in ROLLOVER_HOURS_UTC:
            found.append(
                "HIGH_SPREAD_RISK: Low liquidity during session rollover may result in significantly wider spreads."
            )

        recent = candles[-HAZARD_LOOKBACK:]
        returns = [abs(c.close - c.open) / c.open for c in recent if c.open > 0]
        if returns and sum(returns) / len(returns) > self.volatility_threshold * SLIPPAGE_MULTIPLIER:
            found.append("SLIPPAGE_HAZARD: Extreme momentum detected. Market orders may experience significant slippage.")

        if news_shock is not None and news_shock.severity == "HIGH":
            found.append(f"NEWS_SHOCK_RISK: {news_shock.event}")
        return found

    @staticmethod
    def concentration(symbol: str, direction: Bias, open_positions: Sequence[OpenPosition]) -> Optional[str]:
        sector = asset_class(symbol)
        in_sector = sum(1 for p in open_positions if asset_class(p.symbol) == sector)
        if in_sector >= MAX_SECTOR_POSITIONS:
            return f"PORTFOLIO GUARD: Max sector concentration ({sector}) reached."

        net = sum(p.direction.sign for p in open_positions)
        if direction.is_directional and net * direction.sign > MAX_NET_EXPOSURE:
            side = "Long" if direction is Bias.BULLISH else "Short"
            return f"PORTFOLIO GUARD: High Portfolio Beta: Too many active {side} positions."
        return None

    def prediction_gate(self, prediction: Optional[Prediction]) -> List[str]:
        if prediction is None:
            return []
        reasons: List[str] = []
        if prediction.bias.is_waiting:
            reasons.append(f"SYSTEM HALT: Execution blocked by forecast state ({prediction.bias.value})")
        if prediction.edge_score < self.min_edge_score:
            reasons.append(
                f"EDGE GUARD: Edge Score ({prediction.edge_score}) is below trust-grade threshold "
                f"({self.min_edge_score})"
            )
        return reasons

    def check(
        self,
        prediction: Optional[Prediction],
        setup: Setup,
        candles: Sequence[Candle],
        open_positions: Sequence[OpenPosition] = (),
        symbol: Optional[str] = None,
        news_shock: Optional[NewsShock] = None,
    ) -> GuardDecision:
        symbol = symbol or (prediction.symbol if prediction is not None else "")
        reasons = [f"SAFETY LOCK: {h}" for h in self.hazards(candles, news_shock)]

        concentration = self.concentration(symbol, setup.direction, open_positions)
        if concentration:
            reasons.append(concentration)

        reasons.extend(self.prediction_gate(prediction))

        if reasons:
            logger.warning(f"Execution guard rejected {symbol or 'order'}: {'; '.join(reasons)}")
        return GuardDecision(approved=not reasons, reasons=tuple(reasons))

    def enforce(self, *args, **kwargs) -> GuardDecision:
        decision = self.check(*args, **kwargs)
        if not decision.approved:
            raise ExecutionGuardTriggered(decision.reasons)
        return decision
