"""
Market State Aggregation

One immutable snapshot per evaluation tick. The builder runs every signal
extractor over the supplied history and merges whatever external context
the caller has (higher-timeframe bias, sentiment, order book, news, macro,
alpha statistics). Every optional subsystem is a typed ``Optional`` field:
absent means the caller had nothing, never "probe and hope".

The builder never reads past the last candle it receives, which is what
keeps backtest replays free of lookahead.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from .performance import AlphaSnapshot
from .signals.icebergs import Iceberg, detect_icebergs
from .signals.indicators import Divergence, MomentumSnapshot, momentum_snapshot, rsi_divergences
from .signals.obligations import Obligation, ObligationSet, detect_obligations
from .signals.order_book import DepthAnalysis, DepthSnapshot, analyze_depth
from .signals.order_flow import OrderFlowSnapshot, VolumeAnalysis, analyze_order_flow, detect_institutional_volume
from .signals.session import SessionContext, analyze_session
from .signals.structure import (
    ConfluenceZone,
    FairValueGap,
    LiquidityPool,
    LiquiditySweep,
    OrderBlock,
    StructureEvent,
    SwingPoint,
    confluence_zones,
    detect_fair_value_gaps,
    detect_liquidity_pools,
    detect_liquidity_sweep,
    detect_order_blocks,
    detect_structure_events,
    detect_swing_points,
    wick_rejection,
)
from .signals.volatility import average_true_range, classify_volatility, velocity
from .signals.volume_profile import VolumeProfile, VolumeProfileEngine
from .types import Bias, Candle, MarketRegime, VolatilityRegime

logger = logging.getLogger(__name__)

ANALYSIS_WINDOW = 200
TREND_WINDOW = 50
HTF_FACTOR = 4
TRENDING_STRENGTH = 60.0
RELEVANT_GAP_PCT = 0.01


# =============================================================================
# EXTERNAL CONTEXT
# =============================================================================

@dataclass(frozen=True)
class MultiTimeframeBias:
    global_bias: Bias = Bias.NEUTRAL
    confidence: float = 0.0  # 0-1
    source: str = "DERIVED"  # DERIVED | EXTERNAL


@dataclass(frozen=True)
class NewsEvent:
    time: datetime
    impact: str  # HIGH | MEDIUM | LOW
    currency: str = ""
    directional_bias: Bias = Bias.NEUTRAL
    title: str = ""


@dataclass(frozen=True)
class NewsShock:
    event: str
    severity: str  # HIGH | MEDIUM | LOW
    direction: Bias = Bias.NEUTRAL


@dataclass(frozen=True)
class Sentiment:
    label: str
    confidence: float = 0.5

    @property
    def bias(self) -> Bias:
        return Bias.parse(self.label)


@dataclass(frozen=True)
class MacroBias:
    bias: Bias
    action: str = "NONE"  # NONE | BOOST | VETO
    reason: str = ""


@dataclass(frozen=True)
class CorrelationCluster:
    assets: Tuple[str, ...]
    risk_level: str  # LOW | MODERATE | HIGH | EXTREME
    dominant_factor: str = ""


@dataclass(frozen=True)
class MarketCycle:
    phase: str  # ACCUMULATION | MANIPULATION | DISTRIBUTION | EXPANSION | UNKNOWN
    direction: Bias = Bias.NEUTRAL


@dataclass(frozen=True)
class SMTDivergence:
    kind: str  # e.g. BULLISH_SMT
    sibling: str = "Correlated Asset"

    @property
    def direction(self) -> Bias:
        return Bias.parse(self.kind)


@dataclass(frozen=True)
class FractalPattern:
    prediction: Bias
    confidence: float = 0.0


@dataclass(frozen=True)
class TrapZone:
    location: float
    implication: str  # BULL_TRAP | LONG_TRAP | BEAR_TRAP | SHORT_TRAP

    @property
    def traps(self) -> Bias:
        """Direction of the traders this zone catches."""
        if self.implication in ("BULL_TRAP", "LONG_TRAP"):
            return Bias.BULLISH
        if self.implication in ("BEAR_TRAP", "SHORT_TRAP"):
            return Bias.BEARISH
        return Bias.NEUTRAL


@dataclass(frozen=True)
class TrapZones:
    zones: Tuple[TrapZone, ...] = ()
    warning: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.zones)


@dataclass(frozen=True)
class ExternalContext:
    """Everything the candles alone cannot tell. All fields optional."""
    mtf: Optional[MultiTimeframeBias] = None
    sentiment: Optional[Sentiment] = None
    depth: Optional[DepthSnapshot] = None
    news_events: Tuple[NewsEvent, ...] = ()
    news_shock: Optional[NewsShock] = None
    macro_bias: Optional[MacroBias] = None
    correlation_clusters: Tuple[CorrelationCluster, ...] = ()
    market_cycle: Optional[MarketCycle] = None
    alpha: Optional[AlphaSnapshot] = None
    smt_divergences: Tuple[SMTDivergence, ...] = ()
    smt_confluence: float = 50.0
    fractal: Optional[FractalPattern] = None
    trap_zones: Optional[TrapZones] = None


# =============================================================================
# MARKET STATE
# =============================================================================

@dataclass(frozen=True)
class MarketState:
    symbol: str
    timeframe: str
    timestamp: datetime
    price: float
    candle_count: int
    last_candle: Optional[Candle]

    # Trend / regime
    trend: Bias = Bias.NEUTRAL
    trend_strength: float = 0.0
    regime: MarketRegime = MarketRegime.RANGING
    volatility: VolatilityRegime = VolatilityRegime.NORMAL
    atr: float = 0.0
    velocity: float = 0.0
    mtf: Optional[MultiTimeframeBias] = None
    session: Optional[SessionContext] = None

    # Volume and flow
    volume_profile: Optional[VolumeProfile] = None
    order_flow: Optional[OrderFlowSnapshot] = None
    volume_analysis: Optional[VolumeAnalysis] = None
    icebergs: Tuple[Iceberg, ...] = ()
    depth: Optional[DepthAnalysis] = None
    depth_snapshot: Optional[DepthSnapshot] = None

    # Structure
    swings: Tuple[SwingPoint, ...] = ()
    structure_events: Tuple[StructureEvent, ...] = ()
    liquidity_pools: Tuple[LiquidityPool, ...] = ()
    order_blocks: Tuple[OrderBlock, ...] = ()
    fair_value_gaps: Tuple[FairValueGap, ...] = ()
    confluence_zones: Tuple[ConfluenceZone, ...] = ()
    liquidity_sweep: Optional[LiquiditySweep] = None
    rejection: Optional[Bias] = None
    relevant_gap: Optional[FairValueGap] = None
    divergences: Tuple[Divergence, ...] = ()
    momentum: Optional[MomentumSnapshot] = None
    obligations: Optional[ObligationSet] = None

    # External context
    news_events: Tuple[NewsEvent, ...] = ()
    news_shock: Optional[NewsShock] = None
    sentiment: Optional[Sentiment] = None
    macro_bias: Optional[MacroBias] = None
    correlation_cluster: Optional[CorrelationCluster] = None
    market_cycle: Optional[MarketCycle] = None
    alpha: Optional[AlphaSnapshot] = None
    smt_divergences: Tuple[SMTDivergence, ...] = ()
    smt_divergence: Optional[SMTDivergence] = None
    smt_confluence: float = 50.0
    fractal: Optional[FractalPattern] = None
    trap_zones: Optional[TrapZones] = None

    @property
    def htf_bias(self) -> Bias:
        return self.mtf.global_bias if self.mtf is not None else Bias.NEUTRAL

    @property
    def confidence(self) -> float:
        """Lower-timeframe trend confidence (0-1)."""
        return self.trend_strength / 100.0

    @property
    def mtf_aligned(self) -> bool:
        return self.trend.is_directional and self.htf_bias is self.trend

    @property
    def primary_obligation(self) -> Optional[Obligation]:
        return self.obligations.primary if self.obligations is not None else None

    @property
    def obligation_state(self) -> str:
        return self.obligations.state if self.obligations is not None else "NO_OBLIGATION"

    @property
    def has_high_news_shock(self) -> bool:
        return self.news_shock is not None and self.news_shock.severity == "HIGH"

    @property
    def news_risk(self) -> str:
        """HIGH with an active high shock or a high-impact event within the hour."""
        if self.has_high_news_shock:
            return "HIGH"
        for event in self.news_events:
            if event.impact == "HIGH" and timedelta(0) <= event.time - self.timestamp <= timedelta(hours=1):
                return "HIGH"
        return "LOW"

    def candles_since(self, event: StructureEvent) -> int:
        return self.candle_count - 1 - event.index

    def latest_event(self, kind: str) -> Optional[StructureEvent]:
        for event in reversed(self.structure_events):
            if event.kind == kind:
                return event
        return None

    def active_engines(self, strategy_id: str) -> List[str]:
        """Engines that contributed context at this tick, for alpha attribution."""
        engines = [strategy_id.upper()]
        if self.depth is not None:
            engines.extend(["ORDER_BOOK", "LIVE_DOM"])
        if self.smt_divergences:
            engines.append("SMT")
        if self.relevant_gap is not None or self.fair_value_gaps:
            engines.append("FVG")
        if self.sentiment is not None:
            engines.append("SENTIMENT")
        if self.primary_obligation is not None:
            engines.append("MARKET_OBLIGATION")
        if self.liquidity_sweep is not None:
            engines.append("LIQUIDITY_SWEEP")
        if self.market_cycle is not None:
            engines.append("AMD_CYCLE")
        return engines


# =============================================================================
# BUILDER
# =============================================================================

def linear_trend(closes: Sequence[float]) -> Tuple[Bias, float]:
    """
    Direction from the regression slope, strength as r-squared x 100.

    Flat or too-short series are NEUTRAL with zero strength.
    """
    if len(closes) < 3:
        return Bias.NEUTRAL, 0.0
    y = np.asarray(closes, dtype=float)
    if np.ptp(y) == 0:
        return Bias.NEUTRAL, 0.0
    result = stats.linregress(np.arange(len(y), dtype=float), y)
    if not math.isfinite(result.slope) or not math.isfinite(result.rvalue):
        return Bias.NEUTRAL, 0.0
    strength = float(result.rvalue ** 2 * 100)
    if result.slope > 0:
        return Bias.BULLISH, strength
    if result.slope < 0:
        return Bias.BEARISH, strength
    return Bias.NEUTRAL, 0.0


def resample(candles: Sequence[Candle], factor: int = HTF_FACTOR) -> List[Candle]:
    """Aggregate consecutive groups of ``factor`` candles; a partial tail is dropped."""
    out: List[Candle] = []
    for start in range(0, len(candles) - factor + 1, factor):
        group = candles[start:start + factor]
        out.append(Candle(
            timestamp=group[0].timestamp,
            open=group[0].open,
            high=max(c.high for c in group),
            low=min(c.low for c in group),
            close=group[-1].close,
            volume=sum(c.volume for c in group),
        ))
    return out


class MarketStateBuilder:
    """Runs the extractors and merges external context into a MarketState."""

    def __init__(self, analysis_window: int = ANALYSIS_WINDOW, profile_engine: Optional[VolumeProfileEngine] = None):
        self.analysis_window = analysis_window
        self.profile_engine = profile_engine or VolumeProfileEngine()

    def derive_mtf(self, candles: Sequence[Candle]) -> MultiTimeframeBias:
        htf = resample(candles)
        bias, strength = linear_trend([c.close for c in htf[-TREND_WINDOW:]])
        return MultiTimeframeBias(global_bias=bias, confidence=strength / 100.0)

    def build(
        self,
        symbol: str,
        timeframe: str,
        candles: Sequence[Candle],
        context: Optional[ExternalContext] = None,
    ) -> MarketState:
        if not candles:
            raise ValueError("MarketStateBuilder.build needs at least one candle")

        ctx = context or ExternalContext()
        window = list(candles[-self.analysis_window:])
        last = window[-1]
        price = last.close

        trend, strength = linear_trend([c.close for c in window[-TREND_WINDOW:]])
        regime = MarketRegime.TRENDING if strength > TRENDING_STRENGTH else MarketRegime.RANGING
        mtf = ctx.mtf or self.derive_mtf(candles)

        order_flow = analyze_order_flow(window)
        swings = detect_swing_points(window)
        events = detect_structure_events(window, swings)
        pools = detect_liquidity_pools(window, swings)
        gaps = detect_fair_value_gaps(window)
        blocks = detect_order_blocks(window, events)
        absorption_dir = order_flow.absorption.direction if order_flow.absorption else Bias.NEUTRAL
        sweep = detect_liquidity_sweep(window, pools, absorption_dir)
        profile = self.profile_engine.build_profile(window)

        cluster_levels: List[float] = []
        if profile is not None:
            cluster_levels.extend(n.price for n in profile.naked_pocs)
            cluster_levels.extend(n.price for n in profile.hvns)
        obligations = detect_obligations(price, trend, pools, gaps, len(window), cluster_levels)

        open_gaps = [g for g in gaps if not g.mitigated and abs(g.price - price) / price < RELEVANT_GAP_PCT]
        relevant_gap = min(open_gaps, key=lambda g: abs(g.price - price)) if open_gaps else None

        cluster = next((c for c in ctx.correlation_clusters if symbol in c.assets), None)
        smt = ctx.smt_divergences[-1] if ctx.smt_divergences else None

        state = MarketState(
            symbol=symbol,
            timeframe=timeframe,
            timestamp=last.timestamp,
            price=price,
            candle_count=len(window),
            last_candle=last,
            trend=trend,
            trend_strength=strength,
            regime=regime,
            volatility=classify_volatility(window),
            atr=average_true_range(window),
            velocity=velocity(window),
            mtf=mtf,
            session=analyze_session(last.timestamp),
            volume_profile=profile,
            order_flow=order_flow,
            volume_analysis=detect_institutional_volume(window),
            icebergs=detect_icebergs(window),
            depth=analyze_depth(ctx.depth, price) if ctx.depth is not None and not ctx.depth.is_empty else None,
            depth_snapshot=ctx.depth,
            swings=swings,
            structure_events=events,
            liquidity_pools=pools,
            order_blocks=blocks,
            fair_value_gaps=gaps,
            confluence_zones=confluence_zones(blocks, gaps),
            liquidity_sweep=sweep,
            rejection=wick_rejection(last),
            relevant_gap=relevant_gap,
            divergences=rsi_divergences(window),
            momentum=momentum_snapshot(window),
            obligations=obligations,
            news_events=tuple(ctx.news_events),
            news_shock=ctx.news_shock,
            sentiment=ctx.sentiment,
            macro_bias=ctx.macro_bias,
            correlation_cluster=cluster,
            market_cycle=ctx.market_cycle,
            alpha=ctx.alpha,
            smt_divergences=tuple(ctx.smt_divergences),
            smt_divergence=smt,
            smt_confluence=ctx.smt_confluence,
            fractal=ctx.fractal,
            trap_zones=ctx.trap_zones,
        )
        logger.debug(
            f"{symbol} {timeframe} @ {last.timestamp:%Y-%m-%d %H:%M}: trend={trend.value} "
            f"({strength:.0f}) regime={regime.value} vol={state.volatility.value} "
            f"obligation={obligations.state}"
        )
        return state
