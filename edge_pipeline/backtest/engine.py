"""
Sliding-window backtest engine.

Replays the analysis stack over history without lookahead:

1. For every index i in [warmup, len - tail), build the market state and
   setups from candles[0..i] only, score them, and keep the first setup
   whose raw edge points exceed the threshold (the signal table).
2. Walk the signal table in order. A setup is taken unless the previous
   trade closed less than ``cooldown_hours`` before candle i. The trade is
   resolved on the following ``max_hold_candles`` candles; a stop costs
   ``risk_per_trade`` of the starting capital, a target pays that amount
   times the realized reward:risk. Unresolved trades are discarded.
3. After a recorded trade the scan skips ``advance_after_trade`` candles.

The signal table depends only on the candles, so parameter sweeps build
it once and replay it per override set. Replays are deterministic.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..config import BacktestConfig
from ..market_state import MarketState, MarketStateBuilder
from ..performance import AlphaTracker, EngineAlpha, StrategyPerformanceTracker
from ..scoring import EdgeScoringEngine
from ..types import Bias, Candle, Setup, Trade, TradeOutcome
from .analytics import BacktestStats, summarize
from .data import CandleProvider
from .setups import SetupDetector

logger = logging.getLogger(__name__)

FACTORS = ("fvg", "smt", "sweep", "news", "ote")


@dataclass(frozen=True)
class BacktestOverrides:
    """Optimization knobs. Multipliers stretch the stop/target distance from entry."""
    sl_multiplier: Optional[float] = None
    tp_multiplier: Optional[float] = None
    strategy_filter: Optional[str] = None


@dataclass(frozen=True)
class SignalEntry:
    """The setup selected at one candle index, with its entry context."""
    index: int
    setup: Setup
    points: float
    factors: Mapping[str, bool]
    engines: Tuple[str, ...]


@dataclass(frozen=True)
class FactorAttribution:
    factor: str
    win_rate: int  # 0-100
    impact: int  # trades with the factor present


@dataclass(frozen=True)
class BacktestResult:
    symbol: str
    timeframe: str
    trades: Tuple[Trade, ...]
    equity_curve: Tuple[float, ...]
    stats: BacktestStats
    attribution: Tuple[FactorAttribution, ...]
    engine_alpha: Mapping[str, EngineAlpha] = field(default_factory=dict)
    strategy_weights: Mapping[str, float] = field(default_factory=dict)


def entry_factors(state: MarketState, setup: Setup) -> Dict[str, bool]:
    return {
        "fvg": state.relevant_gap is not None,
        "smt": state.smt_divergence is not None,
        "sweep": state.liquidity_sweep is not None,
        "news": state.news_risk == "LOW",
        "ote": setup.has_fibonacci_confluence,
    }


def attribute_factors(trades: Sequence[Trade]) -> Tuple[FactorAttribution, ...]:
    out: List[FactorAttribution] = []
    for factor in FACTORS:
        present = [t for t in trades if t.factors.get(factor)]
        wins = sum(1 for t in present if t.outcome is TradeOutcome.TP)
        win_rate = int(math.floor(wins / len(present) * 100 + 0.5)) if present else 0
        out.append(FactorAttribution(factor=factor.upper(), win_rate=win_rate, impact=len(present)))
    return tuple(out)


class BacktestEngine:
    """
    Replays the pipeline over candle history.

    Usage:
        engine = BacktestEngine(provider=SyntheticCandleProvider(seed=7))
        result = engine.run_backtest("BTCUSDT", "1h", candle_count=500)
        print(result.stats.win_rate, result.stats.profit_factor)
    """

    def __init__(
        self,
        config: Optional[BacktestConfig] = None,
        provider: Optional[CandleProvider] = None,
        builder: Optional[MarketStateBuilder] = None,
        detector: Optional[SetupDetector] = None,
        scorer: Optional[EdgeScoringEngine] = None,
    ):
        self.config = config or BacktestConfig()
        self.provider = provider
        self.builder = builder or MarketStateBuilder()
        self.detector = detector or SetupDetector()
        self.scorer = scorer or EdgeScoringEngine()

    # ── Signal table ─────────────────────────────────────────────────

    def select_setup(self, state: MarketState) -> Optional[Tuple[Setup, float]]:
        for setup in self.detector.detect(state):
            edge = self.scorer.score(setup, state)
            if edge.points > self.config.min_edge_points:
                return setup, edge.points
        return None

    def signal_table(self, symbol: str, timeframe: str, candles: Sequence[Candle]) -> Dict[int, SignalEntry]:
        cfg = self.config
        table: Dict[int, SignalEntry] = {}
        started = time.time()
        for i in range(cfg.warmup_candles, len(candles) - cfg.tail_candles):
            state = self.builder.build(symbol, timeframe, candles[:i + 1])
            selected = self.select_setup(state)
            if selected is None:
                continue
            setup, points = selected
            table[i] = SignalEntry(
                index=i,
                setup=setup,
                points=points,
                factors=entry_factors(state, setup),
                engines=tuple(state.active_engines(setup.strategy_id)),
            )
        logger.info(
            f"{symbol} {timeframe}: {len(table)} qualifying setups over {len(candles)} candles "
            f"({time.time() - started:.1f}s)"
        )
        return table

    # ── Simulation ───────────────────────────────────────────────────

    def simulate_trade(
        self,
        setup: Setup,
        future: Sequence[Candle],
        overrides: Optional[BacktestOverrides] = None,
        entry_time: Optional[datetime] = None,
    ) -> Optional[Trade]:
        """Resolve one setup on the candles after entry; None when neither level is hit."""
        cfg = self.config
        overrides = overrides or BacktestOverrides()
        entry = setup.entry
        sl = setup.stop_loss
        tp = setup.primary_target
        if tp is None:
            return None
        direction = setup.direction
        if not direction.is_directional:
            return None

        if overrides.sl_multiplier:
            risk = abs(entry - sl) * overrides.sl_multiplier
            sl = entry - risk if direction is Bias.BULLISH else entry + risk
        if overrides.tp_multiplier:
            reward = abs(tp - entry) * overrides.tp_multiplier
            tp = entry + reward if direction is Bias.BULLISH else entry - reward

        risk_amount = cfg.initial_capital * cfg.risk_per_trade
        for candle in future[:cfg.max_hold_candles]:
            if direction is Bias.BULLISH:
                stopped = candle.low <= sl
                hit = candle.high >= tp
            else:
                stopped = candle.high >= sl
                hit = candle.low <= tp

            if stopped:
                return Trade(
                    entry=entry, stop_loss=sl, take_profit=tp, direction=direction,
                    outcome=TradeOutcome.SL, pnl=-risk_amount, pnl_percent=-cfg.risk_per_trade,
                    time=candle.timestamp, entry_time=entry_time, strategy_id=setup.strategy_id,
                )
            if hit:
                risk = abs(entry - sl)
                rr = abs(tp - entry) / risk if risk > 0 else 0.0
                rr = rr or cfg.default_reward_risk
                return Trade(
                    entry=entry, stop_loss=sl, take_profit=tp, direction=direction,
                    outcome=TradeOutcome.TP, pnl=risk_amount * rr, pnl_percent=cfg.risk_per_trade * rr,
                    time=candle.timestamp, entry_time=entry_time, strategy_id=setup.strategy_id,
                )
        return None

    def _in_cooldown(self, trades: Sequence[Trade], now: datetime) -> bool:
        if not trades:
            return False
        return now - trades[-1].time < timedelta(hours=self.config.cooldown_hours)

    def replay(
        self,
        symbol: str,
        timeframe: str,
        candles: Sequence[Candle],
        table: Mapping[int, SignalEntry],
        overrides: Optional[BacktestOverrides] = None,
    ) -> BacktestResult:
        cfg = self.config
        overrides = overrides or BacktestOverrides()
        trades: List[Trade] = []
        balance = cfg.initial_capital
        equity: List[float] = [balance]
        alpha = AlphaTracker()
        performance = StrategyPerformanceTracker()

        i = cfg.warmup_candles
        end = len(candles) - cfg.tail_candles
        while i < end:
            entry = table.get(i)
            if entry is not None and not self._in_cooldown(trades, candles[i].timestamp):
                if overrides.strategy_filter and overrides.strategy_filter not in entry.setup.strategy_id:
                    i += 1
                    continue

                trade = self.simulate_trade(entry.setup, candles[i + 1:], overrides, candles[i].timestamp)
                if trade is not None:
                    trade = replace(trade, factors=dict(entry.factors))
                    trades.append(trade)
                    balance += trade.pnl
                    equity.append(balance)
                    alpha.attribute(trade.pnl, entry.engines)
                    performance.record(trade.strategy_id, trade.is_win)
                    i += cfg.advance_after_trade
            i += 1

        stats = summarize(trades, equity, cfg.initial_capital)
        return BacktestResult(
            symbol=symbol,
            timeframe=timeframe,
            trades=tuple(trades),
            equity_curve=tuple(equity),
            stats=stats,
            attribution=attribute_factors(trades),
            engine_alpha=alpha.reliability(),
            strategy_weights={sid: performance.dynamic_weight(sid) for sid in sorted({t.strategy_id for t in trades})},
        )

    # ── Public API ───────────────────────────────────────────────────

    def load(self, symbol: str, timeframe: str, candle_count: int) -> List[Candle]:
        if self.provider is None:
            raise ValueError("No candle provider configured; pass candles explicitly")
        return self.provider.fetch_history(symbol, timeframe, candle_count)

    def run_backtest(
        self,
        symbol: str,
        timeframe: str = "1h",
        candle_count: int = 500,
        overrides: Optional[BacktestOverrides] = None,
        candles: Optional[Sequence[Candle]] = None,
    ) -> BacktestResult:
        history = list(candles) if candles is not None else self.load(symbol, timeframe, candle_count)
        logger.info(f"Starting backtest for {symbol} {timeframe} ({len(history)} candles) with {overrides}")

        if len(history) < self.config.min_history:
            logger.warning(
                f"{symbol}: {len(history)} candles is below the {self.config.min_history} needed to backtest"
            )
            return self.replay(symbol, timeframe, history[:0], {}, overrides)

        table = self.signal_table(symbol, timeframe, history)
        result = self.replay(symbol, timeframe, history, table, overrides)
        logger.info(
            f"Backtest {symbol} {timeframe}: {result.stats.total_trades} trades, "
            f"win rate {result.stats.win_rate}%, PF {result.stats.profit_factor}, "
            f"return {result.stats.total_return}%"
        )
        return result
