"""
Edge pipeline command line.

Commands:
1. backtest - Replay the pipeline over history
2. optimize - Grid-search stop/target multipliers
3. forecast - Evaluate the latest tick and print the compressed forecast
4. route    - Pick an execution style for one order

Usage:
    python -m edge_pipeline.cli backtest --symbol BTCUSDT --timeframe 1h --candles 500
    python -m edge_pipeline.cli optimize --csv data/EURUSD_1h.csv --sl-range 1,2,0.5
    python -m edge_pipeline.cli forecast --symbol EURUSD --seed 7 --plain
    python -m edge_pipeline.cli route --side BUY --size 2 --price 65000 --spread 5 --urgency HIGH
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional, Tuple

from .backtest import (
    BacktestEngine,
    BacktestOverrides,
    BacktestResult,
    CSVCandleProvider,
    GridOptimizer,
    OptimizationResult,
    SyntheticCandleProvider,
)
from .backtest.data import CandleProvider
from .config import OptimizerConfig, PipelineConfig
from .errors import DataProviderError
from .execution import MicrostructureSnapshot, OrderIntent, SmartExecutionRouter
from .logging_setup import configure_logging
from .pipeline import ForecastPipeline, PipelineResult
from .types import ExecutionDecision, OrderSide, Urgency, VolatilityRegime

logger = logging.getLogger("edge_pipeline.cli")


def parse_range(text: str) -> Tuple[float, float, float]:
    """Parse ``start,stop,step``."""
    parts = [p.strip() for p in text.split(",")]
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(f"expected start,stop,step, got {text!r}")
    try:
        start, stop, step = (float(p) for p in parts)
    except ValueError:
        raise argparse.ArgumentTypeError(f"non-numeric range: {text!r}") from None
    return start, stop, step


def _provider(args: argparse.Namespace) -> CandleProvider:
    if args.csv:
        return CSVCandleProvider(args.csv)
    return SyntheticCandleProvider(seed=args.seed)


def _should_use_rich(plain: bool) -> bool:
    if plain:
        return False
    try:  # pragma: no cover
        import rich  # noqa: F401

        return True
    except ImportError:
        return False


# =============================================================================
# OUTPUT
# =============================================================================

class _PlainUI:
    def error(self, text: str) -> None:
        print(f"error: {text}", file=sys.stderr)

    def backtest(self, result: BacktestResult) -> None:
        s = result.stats
        print(f"== Backtest {result.symbol} {result.timeframe} ==")
        print(f"trades={s.total_trades} win_rate={s.win_rate}% profit_factor={s.profit_factor} sharpe={s.sharpe:.3f}")
        print(f"max_drawdown={s.max_drawdown}% final_balance={s.final_balance:.2f} total_return={s.total_return}%")
        for a in result.attribution:
            print(f"  {a.factor:<6} win_rate={a.win_rate}% trades={a.impact}")

    def optimization(self, result: OptimizationResult, top: int) -> None:
        print(f"== Optimization {result.symbol} {result.timeframe} ==")
        for cell in result.all[:top]:
            print(
                f"SL x{cell.sl:g} TP x{cell.tp:g} score={cell.score:.3f} PF={cell.profit_factor} "
                f"WR={cell.win_rate}% sharpe={cell.sharpe:.3f} trades={cell.total_trades}"
            )
        if result.best is None:
            print("no results")

    def forecast(self, result: PipelineResult) -> None:
        p = result.compression.prediction
        print(f"== Forecast {p.symbol} {p.timeframe} [{p.id}] ==")
        if result.compression.is_suppressed:
            print(f"SUPPRESSED: {result.compression.suppression.reason}")
        print(f"bias={p.bias.value} confidence={p.confidence} edge={p.edge_score} ({p.edge_label})")
        print(f"target={p.target} invalidation={p.invalidation} expires={p.expires_at.isoformat()}")
        print(f"reason: {p.reason}")
        for scenario in result.scenarios.ranked:
            print(f"  {scenario.label:<32} {scenario.probability:6.1%} {scenario.style.value}")

    def route(self, intent: OrderIntent, decision: ExecutionDecision) -> None:
        print(f"{intent.side.value} {intent.size:g} {intent.symbol} -> {decision.type.value}")
        for reason in decision.reasons:
            print(f"  - {reason}")
        for key, value in decision.parameters.items():
            print(f"  {key}={value}")


class _RichUI(_PlainUI):
    def __init__(self) -> None:
        from rich.console import Console

        self._console = Console()

    def error(self, text: str) -> None:
        self._console.print(f"[bold red]error:[/bold red] {text}")

    def backtest(self, result: BacktestResult) -> None:
        from rich.panel import Panel
        from rich.table import Table

        s = result.stats
        t = Table.grid(expand=True)
        t.add_column()
        t.add_column(justify="right")
        t.add_row("trades", str(s.total_trades))
        t.add_row("win rate", f"{s.win_rate}%")
        t.add_row("profit factor", f"{s.profit_factor}")
        t.add_row("sharpe", f"{s.sharpe:.3f}")
        t.add_row("max drawdown", f"{s.max_drawdown}%")
        t.add_row("final balance", f"{s.final_balance:,.2f}")
        t.add_row("total return", f"{s.total_return}%")
        self._console.print(Panel(t, title=f"Backtest {result.symbol} {result.timeframe}", border_style="cyan"))

        attribution = Table(title="Alpha attribution")
        attribution.add_column("Factor")
        attribution.add_column("Win rate", justify="right")
        attribution.add_column("Trades", justify="right")
        for a in result.attribution:
            attribution.add_row(a.factor, f"{a.win_rate}%", str(a.impact))
        self._console.print(attribution)

    def optimization(self, result: OptimizationResult, top: int) -> None:
        from rich.table import Table

        table = Table(title=f"Optimization {result.symbol} {result.timeframe}")
        for name in ("SL x", "TP x", "Score", "PF", "Win rate", "Sharpe", "Max DD", "Trades"):
            table.add_column(name, justify="right")
        for cell in result.all[:top]:
            table.add_row(
                f"{cell.sl:g}", f"{cell.tp:g}", f"{cell.score:.3f}", f"{cell.profit_factor}",
                f"{cell.win_rate}%", f"{cell.sharpe:.3f}", f"{cell.max_drawdown}%", str(cell.total_trades),
            )
        self._console.print(table)

    def forecast(self, result: PipelineResult) -> None:
        from rich.panel import Panel
        from rich.table import Table

        p = result.compression.prediction
        t = Table.grid(expand=True)
        t.add_column()
        t.add_column(justify="right")
        t.add_row("bias", p.bias.value)
        t.add_row("confidence", str(p.confidence))
        t.add_row("edge", f"{p.edge_score} ({p.edge_label})")
        t.add_row("target", "-" if p.target is None else f"{p.target:.6g}")
        t.add_row("invalidation", "-" if p.invalidation is None else f"{p.invalidation:.6g}")
        t.add_row("expires", p.expires_at.isoformat())
        if result.compression.is_suppressed:
            t.add_row("[bold yellow]suppressed[/bold yellow]", result.compression.suppression.reason)
        border = "yellow" if result.compression.is_suppressed else "green"
        self._console.print(Panel(t, title=f"{p.symbol} {p.timeframe} [{p.id}]", border_style=border))
        self._console.print(f"[dim]{p.reason}[/dim]")

        scenarios = Table(title="Scenarios")
        scenarios.add_column("Scenario")
        scenarios.add_column("Probability", justify="right")
        scenarios.add_column("Style")
        for scenario in result.scenarios.ranked:
            scenarios.add_row(scenario.label, f"{scenario.probability:.1%}", scenario.style.value)
        self._console.print(scenarios)

    def route(self, intent: OrderIntent, decision: ExecutionDecision) -> None:
        from rich.panel import Panel

        lines = [f"[bold]{decision.type.value}[/bold]"]
        lines.extend(f"- {r}" for r in decision.reasons)
        lines.extend(f"{k} = {v}" for k, v in decision.parameters.items())
        self._console.print(Panel("\n".join(lines), title=f"{intent.side.value} {intent.size:g} {intent.symbol}"))


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_backtest(args: argparse.Namespace, config: PipelineConfig, ui: _PlainUI) -> int:
    engine = BacktestEngine(config=config.backtest, provider=_provider(args))
    overrides = BacktestOverrides(sl_multiplier=args.sl, tp_multiplier=args.tp, strategy_filter=args.strategy)
    result = engine.run_backtest(args.symbol, args.timeframe, args.candles, overrides)
    ui.backtest(result)
    return 0


def cmd_optimize(args: argparse.Namespace, config: PipelineConfig, ui: _PlainUI) -> int:
    opt_cfg = config.optimizer
    if args.workers:
        opt_cfg = OptimizerConfig(
            sl_range=opt_cfg.sl_range,
            tp_range=opt_cfg.tp_range,
            candle_count=opt_cfg.candle_count,
            max_workers=args.workers,
            use_processes=opt_cfg.use_processes,
        )
    engine = BacktestEngine(config=config.backtest, provider=_provider(args))
    optimizer = GridOptimizer(engine, opt_cfg)
    candles = engine.load(args.symbol, args.timeframe, args.candles or opt_cfg.candle_count)
    result = optimizer.optimize(args.symbol, args.timeframe, candles, args.sl_range, args.tp_range)
    ui.optimization(result, args.top)
    return 0


def cmd_forecast(args: argparse.Namespace, config: PipelineConfig, ui: _PlainUI) -> int:
    candles = _provider(args).fetch_history(args.symbol, args.timeframe, args.candles)
    if not candles:
        raise DataProviderError(f"No candles for {args.symbol} {args.timeframe}")
    result = ForecastPipeline(config).evaluate(args.symbol, args.timeframe, candles)
    ui.forecast(result)
    return 0


def cmd_route(args: argparse.Namespace, config: PipelineConfig, ui: _PlainUI) -> int:
    intent = OrderIntent(args.symbol, OrderSide(args.side), args.size, Urgency(args.urgency))
    snapshot = MicrostructureSnapshot(
        price=args.price,
        spread=args.spread,
        volatility=VolatilityRegime(args.volatility),
    )
    decision = SmartExecutionRouter(config.router).route(intent, snapshot)
    ui.route(intent, decision)
    return 0


def _add_data_args(p: argparse.ArgumentParser, candles: Optional[int]) -> None:
    p.add_argument("--symbol", "-s", default="BTCUSDT", help="Symbol to evaluate")
    p.add_argument("--timeframe", "-t", default="1h", help="Candle timeframe (1m, 5m, 15m, 1h, 4h, 1d)")
    p.add_argument("--candles", "-n", type=int, default=candles, help="History length")
    p.add_argument("--csv", default=None, help="CSV file or directory of {SYMBOL}_{timeframe}.csv files")
    p.add_argument("--seed", type=int, default=42, help="Seed for the synthetic provider")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="edge_pipeline.cli", description="Edge pipeline: forecast, backtest, route")
    parser.add_argument("--plain", action="store_true", help="Plain text output instead of rich tables")
    parser.add_argument("--log-level", default=None, help="Override EDGE_LOG_LEVEL")
    parser.add_argument("--log-file", default=None, help="Override EDGE_LOG_FILE")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    bt_parser = subparsers.add_parser("backtest", help="Run a sliding-window backtest")
    _add_data_args(bt_parser, 500)
    bt_parser.add_argument("--sl", type=float, default=None, help="Stop distance multiplier")
    bt_parser.add_argument("--tp", type=float, default=None, help="Target distance multiplier")
    bt_parser.add_argument("--strategy", default=None, help="Only take setups whose strategy id contains this")
    bt_parser.set_defaults(func=cmd_backtest)

    opt_parser = subparsers.add_parser("optimize", help="Grid-search SL/TP multipliers")
    _add_data_args(opt_parser, None)
    opt_parser.add_argument("--sl-range", type=parse_range, default=None, help="start,stop,step")
    opt_parser.add_argument("--tp-range", type=parse_range, default=None, help="start,stop,step")
    opt_parser.add_argument("--workers", type=int, default=None, help="Worker count")
    opt_parser.add_argument("--top", type=int, default=10, help="Rows to show")
    opt_parser.set_defaults(func=cmd_optimize)

    fc_parser = subparsers.add_parser("forecast", help="Compress the latest tick into one forecast")
    _add_data_args(fc_parser, 300)
    fc_parser.set_defaults(func=cmd_forecast)

    rt_parser = subparsers.add_parser("route", help="Choose an execution style for one order")
    rt_parser.add_argument("--symbol", "-s", default="BTCUSDT")
    rt_parser.add_argument("--side", choices=[s.value for s in OrderSide], required=True)
    rt_parser.add_argument("--size", type=float, required=True)
    rt_parser.add_argument("--price", type=float, required=True)
    rt_parser.add_argument("--spread", type=float, required=True, help="Absolute bid/ask spread")
    rt_parser.add_argument("--urgency", choices=[u.value for u in Urgency], default=Urgency.MEDIUM.value)
    rt_parser.add_argument("--volatility", choices=[v.value for v in VolatilityRegime], default="NORMAL")
    rt_parser.set_defaults(func=cmd_route)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    config = PipelineConfig.from_env()
    configure_logging(level=args.log_level or config.log_level, log_file=args.log_file or config.log_file)
    ui = _RichUI() if _should_use_rich(args.plain) else _PlainUI()

    try:
        return args.func(args, config, ui)
    except DataProviderError as e:
        logger.error(f"Data error: {e}")
        ui.error(str(e))
        return 1
    except ValueError as e:
        ui.error(str(e))
        return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
