"""
Edge scoring rules.

Every rule is a plain function ``rule(ctx) -> Optional[Contribution]``:
it looks at one factor and either stays silent or returns signed points
with the reason that goes into the audit trail. ``RULES`` fixes the order
in which they are evaluated; the engine folds them into one total.

Point values:

    golden confluence              +50
    strategy reliability           +25 / +40, risk below 50%
    adaptive performance           +15 hot hand, -25 cold streak
    risk:reward                    +3 .. +20 against the profile minimum
    higher-timeframe stacking      +25 / -15 x htf weight x trend weight
    institutional volume           +10, -15 when trending without it
    SMT divergence                 +15 / +25 / +35, -20 conflict
    killzone                       +10 / +20 (power hour) x killzone weight
    obligation target              +15
    magnet alignment               +15, -40 against
    iceberg                        +25, -30 into an opposing whale
    absorption                     +20
    CVD                            +10, -5
    POC test / naked POC / DOM     +5 each
    macro                          +/-15, +25 boost, -50 veto (x2 in HIGH vol)
    correlation cluster            -10 / -25
    depth pressure                 bonus x 1.5
    news shock                     -35
    trap zone / trap warning       -30 / -10
    market cycle                   +20 / +25, -10 / -30 / -40
    liquidity sweep                +30
    alpha tracker                  +15 / +8 / -12 per engine, -10 / -20 per leak
    momentum cluster               oscillator points x oscillator weight
    sentiment                      +5, -10
    fractal pattern                +confidence x 20, -15
    directional confidence         +15, -20
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from ..market_state import MarketState
from ..signals.order_book import depth_alignment_bonus
from ..types import Bias, Contribution, MarketRegime, Setup, StrategyReliability, VolatilityRegime
from .profiles import RegimeWeights, TimeframeProfile, profile_for, regime_weights

ICEBERG_PROXIMITY = 0.005
POC_PROXIMITY = 0.002
DOM_WALL_PROXIMITY = 0.001
TRAP_PROXIMITY = 0.003
POWER_HOURS = (8, 9, 13, 14)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def fmt_price(price: float) -> str:
    return f"{price:.6g}"


@dataclass(frozen=True)
class ScoringContext:
    setup: Setup
    state: MarketState
    reliability: StrategyReliability
    profile: TimeframeProfile
    weights: RegimeWeights

    @classmethod
    def build(
        cls,
        setup: Setup,
        state: MarketState,
        reliability: Optional[StrategyReliability] = None,
    ) -> "ScoringContext":
        return cls(
            setup=setup,
            state=state,
            reliability=reliability or StrategyReliability(),
            profile=profile_for(state.timeframe),
            weights=regime_weights(state.regime),
        )

    @property
    def direction(self) -> Bias:
        return self.setup.direction

    @property
    def entry(self) -> float:
        return self.setup.entry or self.state.price


Rule = Callable[[ScoringContext], Optional[Contribution]]


# =============================================================================
# CONTEXT AND STRATEGY
# =============================================================================

def golden_confluence(ctx: ScoringContext) -> Optional[Contribution]:
    state = ctx.state
    if not ctx.direction.is_directional:
        return None
    if (
        state.htf_bias is ctx.direction
        and state.trend is ctx.direction
        and state.sentiment is not None
        and state.sentiment.bias is ctx.direction
        and state.volume_analysis is not None
        and state.volume_analysis.is_institutional
    ):
        return Contribution("golden_confluence", 50, "GOLDEN CONFLUENCE (HTF + Trend + Sentiment + Volume)")
    return None


def strategy_reliability(ctx: ScoringContext) -> Optional[Contribution]:
    reliability = ctx.reliability.probability * 100
    if reliability >= 80:
        return Contribution("strategy_reliability", 40, f"Premium Strategy Reliability ({reliability:.0f}%)")
    if reliability >= 65:
        return Contribution("strategy_reliability", 25, f"Strong Strategy Reliability ({reliability:.0f}%)")
    if reliability < 50:
        return Contribution("strategy_reliability", 0, f"Low Strategy Reliability ({reliability:.0f}%)", is_risk=True)
    return None


def adaptive_performance(ctx: ScoringContext) -> Optional[Contribution]:
    weight = ctx.reliability.dynamic_weight
    if weight > 1.1:
        return Contribution("adaptive_performance", 15, f"HOT HAND: Strategy is winning ({weight:.1f}x boost)")
    if weight < 0.9:
        return Contribution("adaptive_performance", -25, f"COLD STREAK: Strategy is struggling ({weight:.1f}x penalty)")
    return None


def risk_reward(ctx: ScoringContext) -> Optional[Contribution]:
    rr = ctx.setup.risk_reward or 0.0
    profile = ctx.profile
    if rr >= profile.min_rr + 1:
        return Contribution("risk_reward", 20, f"High yield R:R ({rr:.1f}) for {profile.name}")
    if rr >= profile.min_rr:
        return Contribution("risk_reward", 15, f"Standard R:R ({rr:.1f}) for {profile.name}")
    if rr >= profile.min_rr * 0.7:
        return Contribution(
            "risk_reward", 8,
            f"Below-optimal R:R ({rr:.1f}) for {profile.name} - expected >= {profile.min_rr:g}",
            is_risk=True,
        )
    if rr > 0:
        return Contribution("risk_reward", 3, f"Low R:R yield ({rr:.1f}) - high risk for {profile.name}", is_risk=True)
    return None


def htf_stacking(ctx: ScoringContext) -> Optional[Contribution]:
    htf = ctx.state.htf_bias
    swing = ctx.profile.name == "SWING"
    scale = ctx.profile.htf_weight * ctx.weights.trend
    if not htf.is_directional:
        return Contribution("htf_stacking", 5, "Neutral HTF context")
    if htf is ctx.direction:
        return Contribution(
            "htf_stacking", round_half_up(25 * scale),
            f"HTF Context alignment ({'CRITICAL' if swing else 'CONFIRMED'})",
        )
    return Contribution(
        "htf_stacking", -round_half_up(15 * scale),
        f"HTF Bias conflict{' - HIGH RISK FOR SWING' if swing else ''}",
    )


# =============================================================================
# INSTITUTIONAL CONFLUENCE
# =============================================================================

def institutional_volume(ctx: ScoringContext) -> Optional[Contribution]:
    volume = ctx.state.volume_analysis
    if volume is not None and volume.is_institutional:
        return Contribution("institutional_volume", 10, "Institutional volume participation")
    if ctx.state.regime is MarketRegime.TRENDING:
        return Contribution("institutional_volume", -15, "Low Volume in Tracking Phase (Validation Risk)")
    return None


def smt_divergence(ctx: ScoringContext) -> Optional[Contribution]:
    state = ctx.state
    if not state.smt_divergences:
        return None
    smt = state.smt_divergence
    if smt is not None:
        if smt.direction is ctx.direction:
            return Contribution("smt_divergence", 35, f"SMT Divergence Confirmation ({smt.kind} with {smt.sibling})")
        return Contribution("smt_divergence", -20, f"SMT Divergence Conflict ({smt.kind})")
    premium = state.smt_confluence >= 80
    return Contribution(
        "smt_divergence", 25 if premium else 15,
        f"Inter-market divergence (SMT) {'PREMIUM' if premium else 'DETECTED'}",
    )


def killzone(ctx: ScoringContext) -> Optional[Contribution]:
    session = ctx.state.session
    if session is None or session.killzone is None:
        return None
    power_hour = session.hour in POWER_HOURS
    points = round_half_up((20 if power_hour else 10) * ctx.profile.killzone_weight)
    suffix = " - POWER HOUR" if power_hour else ""
    critical = " [CRITICAL]" if ctx.profile.name == "SCALPER" else ""
    return Contribution("killzone", points, f"Killzone alignment ({session.killzone}{suffix}){critical}")


def obligation_target(ctx: ScoringContext) -> Optional[Contribution]:
    primary = ctx.state.primary_obligation
    if primary is not None and primary.urgency > 70:
        return Contribution("obligation_target", 15, "Primary obligation target (Magnet theory)")
    return None


def magnet_alignment(ctx: ScoringContext) -> Optional[Contribution]:
    primary = ctx.state.primary_obligation
    if primary is None or primary.urgency <= 80:
        return None
    magnet = Bias.BULLISH if primary.price > ctx.state.price else Bias.BEARISH
    if magnet is not ctx.direction:
        return Contribution("magnet_alignment", -40, f"CRITICAL: Trading against Major Magnet ({primary.kind})")
    return Contribution("magnet_alignment", 15, f"Magnet Acceleration ({primary.kind})")


# =============================================================================
# ORDER FLOW AND LIQUIDITY
# =============================================================================

def iceberg(ctx: ScoringContext) -> Optional[Contribution]:
    state = ctx.state
    relevant = next(
        (ice for ice in state.icebergs if abs(ice.price - ctx.entry) / state.price < ICEBERG_PROXIMITY),
        None,
    )
    if relevant is None or not ctx.direction.is_directional:
        return None
    if relevant.supports is ctx.direction:
        wall = "Buy" if ctx.direction is Bias.BULLISH else "Sell"
        return Contribution("iceberg", 25, f"WHALE DETECTED: Iceberg {wall} Wall at {fmt_price(relevant.price)}")
    return Contribution("iceberg", -30, f"CRITICAL: Trading into Opposing Iceberg at {fmt_price(relevant.price)}")


def absorption(ctx: ScoringContext) -> Optional[Contribution]:
    flow = ctx.state.order_flow
    if flow is None or flow.absorption is None or flow.absorption.direction is not ctx.direction:
        return None
    side = "Long" if ctx.direction is Bias.BULLISH else "Short"
    return Contribution("absorption", 20, f"Institutional Absorption (Delta Divergence) Supporting {side}")


def cvd(ctx: ScoringContext) -> Optional[Contribution]:
    flow = ctx.state.order_flow
    if flow is None or not flow.cvd_bias.is_directional:
        return None
    if flow.cvd_bias is ctx.direction:
        return Contribution("cvd", 10, "Cumulative Volume Delta (CVD) Aligned")
    # Opposing CVD with absorption is a divergence, not a headwind
    if flow.absorption is None:
        return Contribution("cvd", -5, "Retail Order Flow (CVD) Conflict")
    return None


def poc_test(ctx: ScoringContext) -> Optional[Contribution]:
    profile = ctx.state.volume_profile
    if profile is None or profile.poc <= 0:
        return None
    if abs(ctx.state.price - profile.poc) / profile.poc < POC_PROXIMITY:
        return Contribution("poc_test", 5, "Price testing High-Volume POC")
    return None


def naked_poc(ctx: ScoringContext) -> Optional[Contribution]:
    profile = ctx.state.volume_profile
    if profile is not None and profile.naked_pocs:
        return Contribution("naked_poc", 5, "Institutional nPOC magnet detected")
    return None


def dom_wall(ctx: ScoringContext) -> Optional[Contribution]:
    depth = ctx.state.depth
    if depth is None:
        return None
    if any(abs(w.price - ctx.entry) / ctx.entry < DOM_WALL_PROXIMITY for w in depth.walls):
        return Contribution("dom_wall", 5, "Entry supported by DOM Liquidity Wall")
    return None


# =============================================================================
# MACRO, NEWS AND HAZARDS
# =============================================================================

def macro(ctx: ScoringContext) -> Optional[Contribution]:
    macro_bias = ctx.state.macro_bias
    if macro_bias is None or not macro_bias.bias.is_directional:
        return None
    aligned = macro_bias.bias is ctx.direction
    if macro_bias.action == "VETO" and not aligned:
        return Contribution("macro", -50, f"CRITICAL MACRO VETO: {macro_bias.reason}")

    scale = 2 if ctx.state.volatility is VolatilityRegime.HIGH else 1
    if macro_bias.action == "BOOST" and aligned:
        return Contribution("macro", 25 * scale, f"Macro Turbo Boost: {macro_bias.reason}")
    if aligned:
        return Contribution("macro", 15 * scale, f"Macro Alignment ({macro_bias.bias.value})")
    return Contribution("macro", -15 * scale, f"Macro Bias Headwind ({macro_bias.bias.value})")


def correlation_cluster(ctx: ScoringContext) -> Optional[Contribution]:
    cluster = ctx.state.correlation_cluster
    if cluster is None:
        return None
    if cluster.risk_level == "EXTREME":
        return Contribution("correlation_cluster", -25, f"EXTREME Correlation Risk (Cluster: {cluster.dominant_factor})")
    if cluster.risk_level == "HIGH":
        return Contribution("correlation_cluster", -10, f"High Correlation Risk (Cluster: {cluster.dominant_factor})")
    return None


def depth_pressure(ctx: ScoringContext) -> Optional[Contribution]:
    bonus = depth_alignment_bonus(ctx.direction, ctx.state.depth)
    if bonus > 0:
        return Contribution("depth_pressure", bonus * 1.5, "Institutional depth pressure alignment")
    return None


def news_shock(ctx: ScoringContext) -> Optional[Contribution]:
    shock = ctx.state.news_shock
    if shock is not None and shock.severity == "HIGH":
        return Contribution("news_shock", -35, f"High-impact news hazard ({shock.event})")
    return None


def trap_zone(ctx: ScoringContext) -> Optional[Contribution]:
    traps = ctx.state.trap_zones
    if traps is None:
        return None
    nearby = next(
        (z for z in traps.zones if abs(z.location - ctx.entry) / ctx.entry < TRAP_PROXIMITY),
        None,
    )
    if nearby is None or not ctx.direction.is_directional or nearby.traps is not ctx.direction:
        return None
    side = "Bull" if ctx.direction is Bias.BULLISH else "Bear"
    return Contribution("trap_zone", -30, f"CRITICAL: Trading into confirmed {side} Trap at {fmt_price(nearby.location)}")


def trap_warning(ctx: ScoringContext) -> Optional[Contribution]:
    traps = ctx.state.trap_zones
    if traps is not None and traps.warning:
        return Contribution("trap_warning", -10, traps.warning)
    return None


def market_cycle(ctx: ScoringContext) -> Optional[Contribution]:
    cycle = ctx.state.market_cycle
    if cycle is None or cycle.phase == "UNKNOWN":
        return None
    aligned = cycle.direction is ctx.direction
    if cycle.phase == "MANIPULATION":
        # The manipulation leg runs against the real move
        if aligned:
            return Contribution("market_cycle", -40, "CRITICAL: High probability Judas Swing (Manipulation phase)")
        return Contribution("market_cycle", 25, "Fading manipulation move (Pro-Trend)")
    if cycle.phase in ("DISTRIBUTION", "EXPANSION"):
        if aligned:
            return Contribution("market_cycle", 20, f"Institutional {cycle.phase} alignment")
        return Contribution("market_cycle", -30, f"Counter-institutional {cycle.phase} conflict")
    if cycle.phase == "ACCUMULATION":
        return Contribution("market_cycle", -10, "Early entry hazard (Accumulation phase)")
    return None


def liquidity_sweep(ctx: ScoringContext) -> Optional[Contribution]:
    sweep = ctx.state.liquidity_sweep
    if sweep is not None and sweep.direction is ctx.direction:
        return Contribution("liquidity_sweep", 30, f"Institutional Liquidity Sweep ({sweep.kind})")
    return None


# =============================================================================
# ENGINE RELIABILITY AND MOMENTUM
# =============================================================================

def alpha_tracker(ctx: ScoringContext) -> Optional[Contribution]:
    alpha = ctx.state.alpha
    if alpha is None:
        return None
    engines = ctx.state.active_engines(ctx.setup.strategy_id)
    bonus = 0
    for engine in engines:
        stats = alpha.stats.get(engine)
        if stats is None:
            continue
        if stats.status == "INSTITUTIONAL":
            bonus += 15
        elif stats.status == "HIGH_ALPHA":
            bonus += 8
        elif stats.status == "DEGRADING":
            bonus -= 12
    for leak in alpha.leaks:
        if leak.engine in engines:
            bonus -= 20 if leak.severity == "HIGH" else 10

    if bonus > 0:
        return Contribution("alpha_tracker", bonus, "Institutional Alpha Alignment")
    if bonus < 0:
        return Contribution("alpha_tracker", bonus, "Institutional Alpha Headwind")
    return None


def momentum_points(direction: Bias, state: MarketState, weight: float = 1.0) -> int:
    """Stochastic, RSI and MACD agreement with ``direction``, scaled by ``weight``."""
    momentum = state.momentum
    if momentum is None or not direction.is_directional:
        return 0
    bullish = direction is Bias.BULLISH
    points = 0

    signal = momentum.stochastic_signal
    if bullish and signal in ("BULLISH_CROSS", "OVERSOLD"):
        points += 10
    elif not bullish and signal in ("BEARISH_CROSS", "OVERBOUGHT"):
        points += 10

    if momentum.rsi is not None:
        rsi = momentum.rsi
        if bullish and rsi < 40:
            points += 5
        if not bullish and rsi > 60:
            points += 5
        # Overextension
        if bullish and rsi > 75:
            points -= 15
        if not bullish and rsi < 25:
            points -= 15

    current, previous = momentum.macd_histogram, momentum.previous_macd_histogram
    if current is not None and previous is not None:
        if bullish and previous < current < 0:
            points += 10
        if not bullish and previous > current > 0:
            points += 10

    return round_half_up(points * weight)


def momentum_cluster(ctx: ScoringContext) -> Optional[Contribution]:
    points = momentum_points(ctx.direction, ctx.state, ctx.weights.oscillator)
    if points > 0:
        grade = "PREMIUM" if points > 15 else "STRONG"
        return Contribution("momentum_cluster", points, f"Momentum Cluster Alignment ({grade})")
    if points < 0:
        return Contribution("momentum_cluster", points, f"Momentum Divergence/Overextension ({abs(points)}pt penalty)")
    return None


def sentiment(ctx: ScoringContext) -> Optional[Contribution]:
    crowd = ctx.state.sentiment
    if crowd is None or not crowd.bias.is_directional:
        return None
    if crowd.bias is ctx.direction:
        return Contribution("sentiment", 5, f"Crowd Sentiment Alignment ({crowd.label})")
    if crowd.confidence > 0.7:
        return Contribution("sentiment", -10, f"Crowd Sentiment Conflict ({crowd.label})")
    return None


def fractal_pattern(ctx: ScoringContext) -> Optional[Contribution]:
    fractal = ctx.state.fractal
    if fractal is None or not fractal.prediction.is_directional:
        return None
    if fractal.prediction is ctx.direction:
        return Contribution("fractal_pattern", fractal.confidence * 20, f"Fractal Confirmation ({fractal.confidence * 100:.0f}%)")
    if fractal.confidence > 0.6:
        return Contribution("fractal_pattern", -15, "Fractal Pattern Conflict")
    return None


def directional_confidence(ctx: ScoringContext) -> Optional[Contribution]:
    confidence = ctx.setup.directional_confidence
    if confidence is None:
        return None
    if confidence >= 0.7:
        return Contribution("directional_confidence", 15, f"High Directional Confidence ({confidence * 100:.0f}%)")
    if confidence < 0.5:
        return Contribution("directional_confidence", -20, f"Low Directional Conviction ({confidence * 100:.0f}%)")
    return None


RULES: Tuple[Rule, ...] = (
    golden_confluence,
    strategy_reliability,
    adaptive_performance,
    risk_reward,
    htf_stacking,
    institutional_volume,
    smt_divergence,
    killzone,
    obligation_target,
    magnet_alignment,
    iceberg,
    absorption,
    cvd,
    poc_test,
    naked_poc,
    dom_wall,
    macro,
    correlation_cluster,
    depth_pressure,
    news_shock,
    trap_zone,
    trap_warning,
    market_cycle,
    liquidity_sweep,
    alpha_tracker,
    momentum_cluster,
    sentiment,
    fractal_pattern,
    directional_confidence,
)


def evaluate_rules(ctx: ScoringContext, rules: Tuple[Rule, ...] = RULES) -> List[Contribution]:
    return [c for c in (rule(ctx) for rule in rules) if c is not None]
