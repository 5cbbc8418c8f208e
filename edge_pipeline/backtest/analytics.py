"""
Trade statistics for backtest results.

Percentages are on a 0-100 scale and rounded for display: win rate to one
decimal, profit factor and drawdown to two. Sharpe is the raw per-trade
sample ratio (n - 1 denominator), not annualized.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from ..types import Trade

EPSILON = 1e-12
NO_LOSS_PROFIT_FACTOR = 100.0


@dataclass(frozen=True)
class DrawdownStats:
    max_drawdown: float
    current_drawdown: float


@dataclass(frozen=True)
class BacktestStats:
    total_trades: int
    win_rate: float
    profit_factor: float
    sharpe: float
    max_drawdown: float
    final_balance: float
    total_return: float


def win_rate(trades: Sequence[Trade]) -> float:
    if not trades:
        return 0.0
    wins = sum(1 for t in trades if t.pnl > 0)
    return round(wins / len(trades) * 100, 1)


def profit_factor(pnls: Sequence[float]) -> float:
    """
    Gross profit over gross loss.

    100 when there are no losses but some profit, 0 when there is no profit.
    """
    values = np.asarray(pnls, dtype=float)
    gross_profit = float(values[values > 0].sum()) if values.size else 0.0
    gross_loss = float(np.abs(values[values <= 0]).sum()) if values.size else 0.0
    if gross_loss < EPSILON:
        return NO_LOSS_PROFIT_FACTOR if gross_profit > 0 else 0.0
    return round(gross_profit / gross_loss, 2)


def sharpe_ratio(returns: Sequence[float], risk_free_rate: float = 0.0) -> float:
    if len(returns) < 2:
        return 0.0
    values = np.asarray(returns, dtype=float)
    std = float(np.std(values, ddof=1))
    if std < EPSILON:
        return 0.0
    return float((values.mean() - risk_free_rate) / std)


def drawdown(equity_curve: Sequence[float]) -> DrawdownStats:
    """Largest and current peak-to-trough decline of an equity curve, in percent."""
    if len(equity_curve) == 0:
        return DrawdownStats(0.0, 0.0)
    equity = np.asarray(equity_curve, dtype=float)
    peaks = np.maximum.accumulate(equity)
    with np.errstate(divide="ignore", invalid="ignore"):
        declines = np.where(peaks > 0, (peaks - equity) / peaks, 0.0)
    return DrawdownStats(
        max_drawdown=round(float(declines.max()) * 100, 2),
        current_drawdown=round(float(declines[-1]) * 100, 2),
    )


def max_drawdown(equity_curve: Sequence[float]) -> float:
    return drawdown(equity_curve).max_drawdown


def summarize(trades: Sequence[Trade], equity_curve: Sequence[float], initial_capital: float) -> BacktestStats:
    final_balance = float(equity_curve[-1]) if len(equity_curve) else initial_capital
    total_return = (final_balance - initial_capital) / initial_capital * 100 if initial_capital else 0.0
    return BacktestStats(
        total_trades=len(trades),
        win_rate=win_rate(trades),
        profit_factor=profit_factor([t.pnl for t in trades]),
        sharpe=sharpe_ratio([t.pnl_percent for t in trades]),
        max_drawdown=max_drawdown(equity_curve),
        final_balance=final_balance,
        total_return=round(total_return, 2),
    )


def optimization_score(stats: BacktestStats) -> float:
    """profit factor x sharpe x win rate fraction."""
    return stats.profit_factor * stats.sharpe * (stats.win_rate / 100)

