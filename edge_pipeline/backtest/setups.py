"""
Default setup detection.

Turns a MarketState into up to four candidate Setups. Each strategy reads
only the state (which itself only saw candles up to the evaluation tick):

    LIQUIDITY_SWEEP      fade a wick through resting liquidity
    CHOCH_REVERSAL       trade a fresh change of character
    TREND_CONTINUATION   join a recent break of structure in a trending regime
    ORDER_BLOCK_RETEST   price back inside an order block aligned with bias
    FVG_REBALANCE        price at an open fair value gap aligned with bias

Geometry is enforced on every setup: the stop sits on the losing side of
entry (1% away if a strategy gets it wrong) and the first target pays at
least ``min_reward_risk``.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

from ..market_state import MarketState
from ..signals.structure import LiquidityPool, SwingPoint
from ..types import Bias, MarketRegime, Setup

logger = logging.getLogger(__name__)

MAX_SETUPS = 4
MIN_REWARD_RISK = 1.5
FALLBACK_STOP_PCT = 0.01
STOP_BUFFER_ATR = 0.25
TREND_STOP_ATR = 1.5
FRESH_BOS_CANDLES = 20
FRESH_CHOCH_CANDLES = 10
OTE_ZONE = (0.618, 0.79)


def _stop_beyond(direction: Bias, level: float, atr: float, buffer: float = STOP_BUFFER_ATR) -> float:
    return level - atr * buffer if direction is Bias.BULLISH else level + atr * buffer


def _last_swing(swings: Sequence[SwingPoint], kind: str, below: Optional[float] = None,
                above: Optional[float] = None) -> Optional[SwingPoint]:
    for swing in reversed(swings):
        if swing.kind != kind:
            continue
        if below is not None and swing.price >= below:
            continue
        if above is not None and swing.price <= above:
            continue
        return swing
    return None


def _next_pool(pools: Sequence[LiquidityPool], direction: Bias, entry: float) -> Optional[float]:
    """Nearest untaken pool in the trade's direction."""
    if direction is Bias.BULLISH:
        above = [p.price for p in pools if not p.swept and p.side == "BUY_SIDE" and p.price > entry]
        return min(above) if above else None
    below = [p.price for p in pools if not p.swept and p.side == "SELL_SIDE" and p.price < entry]
    return max(below) if below else None


def in_ote_zone(swings: Sequence[SwingPoint], direction: Bias, entry: float) -> bool:
    """Entry sits in the 61.8%-79% retracement of the latest swing leg."""
    high = _last_swing(swings, "HIGH")
    low = _last_swing(swings, "LOW")
    if high is None or low is None or high.price <= low.price:
        return False
    leg = high.price - low.price
    if direction is Bias.BULLISH and low.index < high.index:
        retracement = (high.price - entry) / leg
    elif direction is Bias.BEARISH and high.index < low.index:
        retracement = (entry - low.price) / leg
    else:
        return False
    return OTE_ZONE[0] <= retracement <= OTE_ZONE[1]


class SetupDetector:
    """
    Produces geometry-checked Setups from one market state.

    Usage:
        detector = SetupDetector()
        setups = detector.detect(state)
    """

    def __init__(self, max_setups: int = MAX_SETUPS, min_reward_risk: float = MIN_REWARD_RISK):
        self.max_setups = max_setups
        self.min_reward_risk = min_reward_risk
        self.strategies: List[Callable[[MarketState], Optional[Setup]]] = [
            self.liquidity_sweep,
            self.choch_reversal,
            self.trend_continuation,
            self.order_block_retest,
            self.fvg_rebalance,
        ]

    # ── Geometry ─────────────────────────────────────────────────────

    def finalize(
        self,
        state: MarketState,
        strategy_id: str,
        direction: Bias,
        entry: float,
        stop: float,
        target: Optional[float],
    ) -> Optional[Setup]:
        if not direction.is_directional or entry <= 0:
            return None
        if direction is Bias.BULLISH and stop >= entry:
            stop = entry * (1 - FALLBACK_STOP_PCT)
        elif direction is Bias.BEARISH and stop <= entry:
            stop = entry * (1 + FALLBACK_STOP_PCT)

        risk = abs(entry - stop)
        min_reward = risk * self.min_reward_risk
        if direction is Bias.BULLISH:
            if target is None or target <= entry + min_reward:
                target = entry + min_reward
        else:
            if target is None or target >= entry - min_reward:
                target = entry - min_reward

        return Setup(
            direction=direction,
            entry=entry,
            stop_loss=stop,
            targets=(target,),
            strategy_id=strategy_id,
            has_fibonacci_confluence=in_ote_zone(state.swings, direction, entry),
        )

    # ── Strategies ───────────────────────────────────────────────────

    def liquidity_sweep(self, state: MarketState) -> Optional[Setup]:
        sweep = state.liquidity_sweep
        if sweep is None or state.last_candle is None:
            return None
        direction = sweep.direction
        if direction is Bias.BULLISH:
            extreme = min(state.last_candle.low, sweep.price)
        else:
            extreme = max(state.last_candle.high, sweep.price)
        stop = _stop_beyond(direction, extreme, state.atr)
        return self.finalize(
            state, "LIQUIDITY_SWEEP", direction, state.price, stop,
            _next_pool(state.liquidity_pools, direction, state.price),
        )

    def choch_reversal(self, state: MarketState) -> Optional[Setup]:
        event = state.latest_event("CHOCH")
        if event is None or state.candles_since(event) > FRESH_CHOCH_CANDLES:
            return None
        direction = event.direction
        if direction is Bias.BULLISH:
            swing = _last_swing(state.swings, "LOW", below=state.price)
        else:
            swing = _last_swing(state.swings, "HIGH", above=state.price)
        stop = _stop_beyond(direction, swing.price, state.atr) if swing else state.price - direction.sign * state.atr * TREND_STOP_ATR
        return self.finalize(
            state, "CHOCH_REVERSAL", direction, state.price, stop,
            _next_pool(state.liquidity_pools, direction, state.price),
        )

    def trend_continuation(self, state: MarketState) -> Optional[Setup]:
        if state.regime is not MarketRegime.TRENDING or not state.trend.is_directional:
            return None
        event = state.latest_event("BOS")
        if event is None or event.direction is not state.trend or state.candles_since(event) > FRESH_BOS_CANDLES:
            return None
        direction = state.trend
        if direction is Bias.BULLISH:
            swing = _last_swing(state.swings, "LOW", below=state.price)
        else:
            swing = _last_swing(state.swings, "HIGH", above=state.price)
        stop = _stop_beyond(direction, swing.price, state.atr) if swing else state.price - direction.sign * state.atr * TREND_STOP_ATR
        return self.finalize(
            state, "TREND_CONTINUATION", direction, state.price, stop,
            _next_pool(state.liquidity_pools, direction, state.price),
        )

    def order_block_retest(self, state: MarketState) -> Optional[Setup]:
        bias = state.htf_bias if state.htf_bias.is_directional else state.trend
        if not bias.is_directional:
            return None
        pad = state.atr * 0.1
        for block in reversed(state.order_blocks):
            if block.direction is not bias:
                continue
            if block.low - pad <= state.price <= block.high + pad:
                level = block.low if bias is Bias.BULLISH else block.high
                return self.finalize(
                    state, "ORDER_BLOCK_RETEST", bias, state.price,
                    _stop_beyond(bias, level, state.atr),
                    _next_pool(state.liquidity_pools, bias, state.price),
                )
        return None

    def fvg_rebalance(self, state: MarketState) -> Optional[Setup]:
        gap = state.relevant_gap
        if gap is None:
            return None
        if gap.direction is not state.trend and gap.direction is not state.htf_bias:
            return None
        direction = gap.direction
        level = gap.bottom if direction is Bias.BULLISH else gap.top
        return self.finalize(
            state, "FVG_REBALANCE", direction, state.price,
            _stop_beyond(direction, level, state.atr, buffer=0.5),
            _next_pool(state.liquidity_pools, direction, state.price),
        )

    # ── Public API ───────────────────────────────────────────────────

    def detect(self, state: MarketState) -> List[Setup]:
        if state.atr <= 0:
            return []
        setups: List[Setup] = []
        for strategy in self.strategies:
            setup = strategy(state)
            if setup is not None:
                setups.append(setup)
            if len(setups) >= self.max_setups:
                break
        if setups:
            logger.debug(f"{state.symbol} setups: {', '.join(f'{s.strategy_id}/{s.direction.value}' for s in setups)}")
        return setups
