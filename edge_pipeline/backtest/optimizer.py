"""
Stop-loss / take-profit grid search.

Candles are fetched once and the signal table is built once; each grid
cell only replays the table with its multipliers. Cells share nothing but
those read-only inputs, so they fan out over a ``concurrent.futures``
executor.

Cells are ranked by profit factor x sharpe x win rate fraction; ties keep
grid order.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from ..config import OptimizerConfig
from ..types import Candle
from .analytics import optimization_score
from .engine import BacktestEngine, BacktestOverrides, BacktestResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptimizationCell:
    sl: float
    tp: float
    profit_factor: float
    win_rate: float
    total_return: float
    sharpe: float
    max_drawdown: float
    total_trades: int
    score: float


@dataclass(frozen=True)
class OptimizationResult:
    symbol: str
    timeframe: str
    best: Optional[OptimizationCell]
    all: Tuple[OptimizationCell, ...]


def frange(bounds: Sequence[float]) -> List[float]:
    """Inclusive ``(start, stop, step)`` range, free of float drift."""
    if len(bounds) != 3:
        raise ValueError(f"Range needs (start, stop, step), got {tuple(bounds)}")
    start, stop, step = (float(b) for b in bounds)
    if step <= 0:
        raise ValueError(f"Range step must be positive, got {step}")
    if stop < start:
        raise ValueError(f"Empty range: start {start} > stop {stop}")
    count = int(math.floor((stop - start) / step + 1e-9)) + 1
    return [round(start + k * step, 10) for k in range(count)]


def _cell(result: BacktestResult, sl: float, tp: float) -> OptimizationCell:
    stats = result.stats
    return OptimizationCell(
        sl=sl,
        tp=tp,
        profit_factor=stats.profit_factor,
        win_rate=stats.win_rate,
        total_return=stats.total_return,
        sharpe=stats.sharpe,
        max_drawdown=stats.max_drawdown,
        total_trades=stats.total_trades,
        score=optimization_score(stats),
    )


class GridOptimizer:
    """
    Usage:
        optimizer = GridOptimizer(BacktestEngine(provider=provider))
        result = optimizer.optimize("EURUSD", "1h")
        print(result.best.sl, result.best.tp, result.best.score)
    """

    def __init__(self, engine: Optional[BacktestEngine] = None, config: Optional[OptimizerConfig] = None):
        self.engine = engine or BacktestEngine()
        self.config = config or OptimizerConfig()

    def _executor(self) -> Executor:
        if self.config.use_processes:
            return ProcessPoolExecutor(max_workers=self.config.max_workers)
        return ThreadPoolExecutor(max_workers=self.config.max_workers)

    def optimize(
        self,
        symbol: str,
        timeframe: str = "1h",
        candles: Optional[Sequence[Candle]] = None,
        sl_range: Optional[Sequence[float]] = None,
        tp_range: Optional[Sequence[float]] = None,
    ) -> OptimizationResult:
        sl_values = frange(sl_range or self.config.sl_range)
        tp_values = frange(tp_range or self.config.tp_range)
        grid = [(sl, tp) for sl in sl_values for tp in tp_values]

        history = list(candles) if candles is not None else self.engine.load(
            symbol, timeframe, self.config.candle_count
        )
        logger.info(f"Starting optimization for {symbol} {timeframe}: {len(grid)} cells over {len(history)} candles")
        started = time.time()

        if len(history) < self.engine.config.min_history:
            logger.warning(f"{symbol}: not enough history to optimize ({len(history)} candles)")
            table = {}
            history = []
        else:
            table = self.engine.signal_table(symbol, timeframe, history)

        cells: Dict[int, OptimizationCell] = {}
        with self._executor() as executor:
            futures = {
                executor.submit(
                    self.engine.replay, symbol, timeframe, history, table,
                    BacktestOverrides(sl_multiplier=sl, tp_multiplier=tp),
                ): idx
                for idx, (sl, tp) in enumerate(grid)
            }
            for future in as_completed(futures):
                idx = futures[future]
                sl, tp = grid[idx]
                try:
                    cells[idx] = _cell(future.result(), sl, tp)
                except (ArithmeticError, ValueError) as e:
                    logger.warning(f"Optimizer cell SL x{sl} / TP x{tp} failed: {e}")

        ranked = sorted(cells.items(), key=lambda item: (-item[1].score, item[0]))
        results = tuple(cell for _, cell in ranked)
        best = results[0] if results else None
        if best is not None:
            logger.info(
                f"Optimization {symbol} done in {time.time() - started:.1f}s: best SL x{best.sl} / TP x{best.tp} "
                f"(score {best.score:.3f}, PF {best.profit_factor}, WR {best.win_rate}%)"
            )
        return OptimizationResult(symbol=symbol, timeframe=timeframe, best=best, all=results)
