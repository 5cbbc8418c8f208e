"""
Pipeline Configuration

Collects the heuristic constants of the pipeline in one place so they can
be varied in parameter sweeps and overridden from the environment. Values
that define scoring or signal semantics (edge point tables, detector
thresholds) are fixed in their modules; what lives here are the knobs an
operator is expected to tune: backtest replay rules, scenario gating,
routing thresholds and the optimization grid.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None or value == "" else value


def _get_env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _get_env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _get_env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_env_range(name: str, default: Tuple[float, float, float]) -> Tuple[float, float, float]:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    parts = [p.strip() for p in value.split(",")]
    if len(parts) != 3:
        raise ValueError(f"{name} must be 'start,stop,step', got {value!r}")
    start, stop, step = (float(p) for p in parts)
    return (start, stop, step)


@dataclass(frozen=True)
class BacktestConfig:
    """Sliding-window replay rules."""

    warmup_candles: int = 50
    """First index evaluated; earlier candles only feed indicators."""

    tail_candles: int = 10
    """Candles left unevaluated at the end of the history."""

    max_hold_candles: int = 48
    """Future candles scanned to resolve a trade before it is discarded."""

    cooldown_hours: float = 5.0
    """A new trade is blocked until this long after the prior trade closed (candle time)."""

    min_edge_points: float = 75.0
    """Raw edge points a setup must exceed to be taken."""

    advance_after_trade: int = 5
    """Index skip after a recorded trade."""

    initial_capital: float = 10_000.0
    """Starting equity of the curve."""

    risk_per_trade: float = 0.01
    """Fraction of initial capital lost on a stop-out."""

    default_reward_risk: float = 2.0
    """Realized R used when the risk distance is degenerate."""

    min_history: int = 100
    """Histories shorter than this produce an empty result."""

    @staticmethod
    def from_env() -> "BacktestConfig":
        return BacktestConfig(
            warmup_candles=_get_env_int("EDGE_BACKTEST_WARMUP", 50),
            tail_candles=_get_env_int("EDGE_BACKTEST_TAIL", 10),
            max_hold_candles=_get_env_int("EDGE_BACKTEST_MAX_HOLD", 48),
            cooldown_hours=_get_env_float("EDGE_BACKTEST_COOLDOWN_HOURS", 5.0),
            min_edge_points=_get_env_float("EDGE_BACKTEST_MIN_POINTS", 75.0),
            advance_after_trade=_get_env_int("EDGE_BACKTEST_ADVANCE", 5),
            initial_capital=_get_env_float("EDGE_BACKTEST_CAPITAL", 10_000.0),
            risk_per_trade=_get_env_float("EDGE_BACKTEST_RISK", 0.01),
            default_reward_risk=_get_env_float("EDGE_BACKTEST_DEFAULT_RR", 2.0),
            min_history=_get_env_int("EDGE_BACKTEST_MIN_HISTORY", 100),
        )


@dataclass(frozen=True)
class ScenarioConfig:
    """Scenario probability gating."""

    # ── Waiting states ────────────────────────────────────────────────
    waiting_range: float = 0.60
    """Range probability when the market is waiting (news, low-vol chop)."""

    no_obligation_range: float = 0.80
    """Range probability when no magnet exists; the rest is split evenly."""

    no_signal_range: float = 0.70
    """Range probability with neither setup nor obligation."""

    # ── Calibration caps ──────────────────────────────────────────────
    directional_cap: float = 0.75
    """No single directional probability may exceed this."""

    combined_directional_cap: float = 0.85
    """Up + down are scaled down to this when they exceed it."""

    # ── News ──────────────────────────────────────────────────────────
    imminent_news_minutes: float = 60.0
    """A high-impact event this close is 'imminent'."""

    high_impact_minutes: float = 30.0
    """Inside this window the news adjustment is 0.3 instead of 0.1."""

    # ── Pathway ───────────────────────────────────────────────────────
    wall_gravity_pct: float = 0.03
    """Opposing depth walls closer than this replace the target."""

    default_projection_pct: float = 0.02
    """Target projection when no setup target exists."""

    @staticmethod
    def from_env() -> "ScenarioConfig":
        return ScenarioConfig(
            waiting_range=_get_env_float("EDGE_SCENARIO_WAITING_RANGE", 0.60),
            no_obligation_range=_get_env_float("EDGE_SCENARIO_NO_OBLIGATION_RANGE", 0.80),
            imminent_news_minutes=_get_env_float("EDGE_SCENARIO_NEWS_MINUTES", 60.0),
        )


@dataclass(frozen=True)
class RouterConfig:
    """Smart execution routing thresholds."""

    max_slippage_tolerance: float = 0.005
    """Walked-book slippage above this downgrades MARKET to LIMIT_CHASE."""

    iceberg_threshold_usd: float = 100_000.0
    twap_threshold_usd: float = 500_000.0

    market_spread_pct: float = 0.001
    chase_spread_pct: float = 0.003

    twap_slices: int = 10
    twap_duration_minutes: float = 60.0
    iceberg_visible_pct: float = 0.10
    iceberg_variance: float = 0.2
    max_chase: int = 3

    @staticmethod
    def from_env() -> "RouterConfig":
        return RouterConfig(
            max_slippage_tolerance=_get_env_float("EDGE_ROUTER_SLIPPAGE_TOLERANCE", 0.005),
            iceberg_threshold_usd=_get_env_float("EDGE_ROUTER_ICEBERG_USD", 100_000.0),
            twap_threshold_usd=_get_env_float("EDGE_ROUTER_TWAP_USD", 500_000.0),
        )


@dataclass(frozen=True)
class OptimizerConfig:
    """Stop-loss / take-profit multiplier grid."""

    sl_range: Tuple[float, float, float] = (1.0, 3.0, 0.5)
    tp_range: Tuple[float, float, float] = (1.0, 5.0, 0.5)
    candle_count: int = 300
    max_workers: Optional[int] = None
    use_processes: bool = False

    @staticmethod
    def from_env() -> "OptimizerConfig":
        workers = _get_env_int("EDGE_OPTIMIZER_WORKERS", 0)
        return OptimizerConfig(
            sl_range=_get_env_range("EDGE_OPTIMIZER_SL_RANGE", (1.0, 3.0, 0.5)),
            tp_range=_get_env_range("EDGE_OPTIMIZER_TP_RANGE", (1.0, 5.0, 0.5)),
            candle_count=_get_env_int("EDGE_OPTIMIZER_CANDLES", 300),
            max_workers=workers or None,
            use_processes=_get_env_bool("EDGE_OPTIMIZER_PROCESSES", False),
        )


@dataclass(frozen=True)
class PipelineConfig:
    backtest: BacktestConfig = field(default_factory=BacktestConfig)
    scenario: ScenarioConfig = field(default_factory=ScenarioConfig)
    router: RouterConfig = field(default_factory=RouterConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @staticmethod
    def from_env() -> "PipelineConfig":
        return PipelineConfig(
            backtest=BacktestConfig.from_env(),
            scenario=ScenarioConfig.from_env(),
            router=RouterConfig.from_env(),
            optimizer=OptimizerConfig.from_env(),
            log_level=_get_env("EDGE_LOG_LEVEL", "INFO"),
            log_file=(_get_env("EDGE_LOG_FILE", "").strip() or None),
        )
