"""
Scenario Engine

Turns a market state and the scored setups into three probability-weighted
outcomes (up / down / range) and draws a price pathway for the two most
likely ones.

Probability flow:

    1. Waiting states (imminent high-impact news, low-volatility chop)
       skew toward range: 0.20 / 0.20 / 0.60.
    2. No market obligation: nothing pulls price anywhere, 0.10 / 0.10 / 0.80.
    3. Otherwise the bias comes from the best setup, or from the primary
       obligation when there is no setup. Trend-aligned bias starts at
       0.65, counter-trend at 0.35 (0.55 with conviction above 75), and
       a high-urgency magnet adds 0.15. An imminent news event with its
       own directional bias shifts 0.1-0.3 between the two sides.
    4. Calibration: no direction above 0.75, both directions together
       at most 0.85, then normalized so the three sum to 1.0.

Confirmation only changes how a scenario is drawn, never its probability.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from .config import ScenarioConfig
from .errors import ensure_finite
from .market_state import MarketState, NewsEvent
from .signals.order_book import find_clusters
from .types import (
    Bias,
    EdgeScore,
    MarketRegime,
    PathPoint,
    PathStyle,
    Scenario,
    ScenarioDirection,
    ScenarioSet,
    Setup,
    VolatilityRegime,
)

logger = logging.getLogger(__name__)

_LABELS = {
    ScenarioDirection.UP: "Bullish Expansion",
    ScenarioDirection.DOWN: "Bearish Expansion",
    ScenarioDirection.RANGE: "Consolidation",
}

DEFAULT_CONVICTION = 50.0
CONVICTION_OVERRIDE = 75.0
HIGH_URGENCY = 80.0
CONFIRMATION_TREND_STRENGTH = 60.0
CONFIRMATION_EDGE_POINTS = 60.0
POC_PIVOT_DISTANCE = 0.005
MANIPULATION_POOL_DISTANCE = 0.01
PIVOT_BARS = 5
TARGET_BARS = 15
MANIPULATION_BARS = 2


@dataclass(frozen=True)
class NewsProximity:
    event: NewsEvent
    minutes_to_event: float


def imminent_news(state: MarketState, window_minutes: float) -> Optional[NewsProximity]:
    """Nearest upcoming HIGH-impact event inside ``window_minutes`` of the state's time."""
    upcoming: List[NewsProximity] = []
    for event in state.news_events:
        if event.impact != "HIGH":
            continue
        minutes = (event.time - state.timestamp).total_seconds() / 60
        if 0 <= minutes <= window_minutes:
            upcoming.append(NewsProximity(event, minutes))
    if not upcoming:
        return None
    return min(upcoming, key=lambda p: p.minutes_to_event)


class ScenarioEngine:
    """Generates the ranked up / down / range scenarios for one tick."""

    def __init__(self, config: Optional[ScenarioConfig] = None):
        self.config = config or ScenarioConfig()

    # ── Waiting states ───────────────────────────────────────────────

    def waiting_condition(self, state: MarketState) -> Optional[str]:
        if imminent_news(state, self.config.imminent_news_minutes) is not None:
            return "NEWS PENDING"
        if state.volatility is VolatilityRegime.LOW and state.regime is MarketRegime.RANGING:
            return "LOW VOLATILITY"
        return None

    # ── Probabilities ────────────────────────────────────────────────

    def _directional_probabilities(
        self,
        state: MarketState,
        setup: Optional[Setup],
        conviction: float,
    ) -> Tuple[float, float]:
        """(up, down) before calibration."""
        cfg = self.config
        obligation = state.primary_obligation

        bias = Bias.NEUTRAL
        if setup is not None:
            bias = setup.direction
        elif obligation is not None:
            bias = obligation.direction_from(state.price)
            conviction = obligation.urgency

        bullish = bias is Bias.BULLISH
        htf = state.htf_bias
        base = 0.5
        if htf.is_directional and htf is bias:
            base = 0.65
        elif htf.is_directional:
            base = 0.55 if conviction > CONVICTION_OVERRIDE else 0.35

        if obligation is not None and obligation.urgency > HIGH_URGENCY:
            base += 0.15

        if bullish:
            up, down = base, 0.80 - base
        else:
            up, down = 0.80 - base, base

        # probabilities() turns the same event into NEWS PENDING first, so this
        # shift only applies when the method is called outside that gate.
        news = imminent_news(state, cfg.imminent_news_minutes)
        if news is not None and news.event.directional_bias.is_directional:
            impact = 0.3 if news.minutes_to_event < cfg.high_impact_minutes else 0.1
            aligned = news.event.directional_bias is (Bias.BULLISH if bullish else Bias.BEARISH)
            if not aligned:
                if bullish:
                    up, down = up - impact, down + impact
                else:
                    up, down = up + impact, down - impact
            elif bullish:
                up += impact / 2
            else:
                down += impact / 2

        return up, down

    def probabilities(
        self,
        state: MarketState,
        setup: Optional[Setup] = None,
        conviction: float = DEFAULT_CONVICTION,
    ) -> Tuple[Tuple[float, float, float], Optional[str]]:
        """((up, down, range), waiting condition) after calibration."""
        cfg = self.config
        waiting = self.waiting_condition(state)

        if waiting is not None:
            side = (1 - cfg.waiting_range) / 2
            up, down = side, side
        elif state.obligations is not None and state.obligation_state == "NO_OBLIGATION":
            waiting = "NO OBLIGATION"
            side = (1 - cfg.no_obligation_range) / 2
            up, down = side, side
        elif setup is not None or state.primary_obligation is not None:
            up, down = self._directional_probabilities(state, setup, conviction)
        else:
            side = (1 - cfg.no_signal_range) / 2
            up, down = side, side

        up = min(max(up, 0.0), cfg.directional_cap)
        down = min(max(down, 0.0), cfg.directional_cap)
        if up + down > cfg.combined_directional_cap:
            factor = cfg.combined_directional_cap / (up + down)
            up *= factor
            down *= factor
        range_ = 1.0 - (up + down)

        total = up + down + range_
        triple = (up / total, down / total, range_ / total)
        for name, value in zip(("up", "down", "range"), triple):
            ensure_finite(value, f"{name} probability")
        return triple, waiting

    # ── Confirmation and pathways ────────────────────────────────────

    @staticmethod
    def is_confirmed(
        state: MarketState,
        direction: ScenarioDirection,
        setups: Sequence[Setup],
        points: Sequence[float],
    ) -> bool:
        if direction is ScenarioDirection.RANGE:
            return True
        bias = direction.bias
        if state.htf_bias is bias:
            return True
        if state.trend_strength > CONFIRMATION_TREND_STRENGTH and state.trend is bias:
            return True
        return any(
            setup.direction is bias and pts > CONFIRMATION_EDGE_POINTS
            for setup, pts in zip(setups, points)
        )

    def _manipulation_point(self, state: MarketState, bias: Bias) -> Optional[PathPoint]:
        """Fake-out into opposite-side liquidity while the cycle is in manipulation."""
        cycle = state.market_cycle
        if cycle is None or cycle.phase != "MANIPULATION" or cycle.direction is not bias.opposite:
            return None
        side = "SELL_SIDE" if bias is Bias.BULLISH else "BUY_SIDE"
        pools = [
            p for p in state.liquidity_pools
            if p.side == side and not p.swept
            and abs(p.price - state.price) / state.price < MANIPULATION_POOL_DISTANCE
        ]
        if pools:
            price = min(pools, key=lambda p: abs(p.price - state.price)).price
        else:
            price = state.price - bias.sign * state.atr * 0.5
        return PathPoint(price, "MANIPULATION", MANIPULATION_BARS, "Judas Swing")

    @staticmethod
    def _pivot_price(state: MarketState, bias: Bias, setup: Optional[Setup]) -> Optional[float]:
        if setup is not None:
            return setup.entry
        if state.confluence_zones:
            return state.confluence_zones[0].midpoint
        profile = state.volume_profile
        if profile is not None and abs(state.price - profile.poc) / state.price > POC_PIVOT_DISTANCE:
            return profile.poc
        block = next((ob for ob in state.order_blocks if ob.direction is bias), None)
        return block.midpoint if block is not None else None

    def pathway(self, state: MarketState, direction: ScenarioDirection, setup: Optional[Setup]) -> Tuple[PathPoint, ...]:
        """START -> optional MANIPULATION -> optional PIVOT -> TARGET."""
        price = state.price
        points = [PathPoint(price, "START", 0, "Now")]
        if direction is ScenarioDirection.RANGE:
            points.append(PathPoint(price, "TARGET", TARGET_BARS, "Target"))
            return tuple(points)

        bias = direction.bias
        bullish = bias is Bias.BULLISH

        manipulation = self._manipulation_point(state, bias)
        if manipulation is not None:
            points.append(manipulation)

        pivot = self._pivot_price(state, bias, setup)
        if pivot is not None and ((bullish and pivot < price) or (not bullish and pivot > price)):
            points.append(PathPoint(pivot, "PIVOT", PIVOT_BARS, "Entry"))

        projection = self.config.default_projection_pct
        target = setup.primary_target if setup is not None else None
        if target is None:
            target = price * (1 + projection) if bullish else price * (1 - projection)

        buy_clusters, sell_clusters = find_clusters(state.depth_snapshot)
        opposing = sell_clusters if bullish else buy_clusters
        if opposing:
            wall = max(opposing, key=lambda w: w.quantity)
            if abs(wall.price - price) / price < self.config.wall_gravity_pct:
                target = wall.price

        points.append(PathPoint(target, "TARGET", TARGET_BARS, "Target"))
        return tuple(points)

    # ── Public API ───────────────────────────────────────────────────

    def generate_scenarios(
        self,
        state: MarketState,
        setups: Sequence[Setup] = (),
        scores: Sequence[EdgeScore] = (),
    ) -> ScenarioSet:
        """
        ``setups`` best first; ``scores`` aligned with them. The first setup
        sets the bias, its edge points its conviction.
        """
        setups = list(setups)
        points = [s.points for s in scores]
        primary_setup = setups[0] if setups else None
        conviction = points[0] if points else DEFAULT_CONVICTION

        (up, down, range_), waiting = self.probabilities(state, primary_setup, conviction)
        is_waiting = waiting is not None

        # Stable ranking on two-decimal probabilities; ties keep up, down, range order
        ranked_dirs = sorted(
            ((ScenarioDirection.UP, up), (ScenarioDirection.DOWN, down), (ScenarioDirection.RANGE, range_)),
            key=lambda item: -round(item[1], 2),
        )

        scenarios: List[Scenario] = []
        for rank, (direction, prob) in enumerate(ranked_dirs):
            confirmed = self.is_confirmed(state, direction, setups, points)
            setup = next((s for s in setups if s.direction is direction.bias), None)
            if rank == 0:
                label = f"WAITING: {waiting}" if is_waiting else f"Primary: {_LABELS[direction]}"
                description = (
                    "Market is in a waiting state. Execution not recommended."
                    if is_waiting
                    else f"Highest probability path ({prob * 100:.0f}%) based on current {state.regime.value} regime."
                )
                if is_waiting:
                    style = PathStyle.DOTTED
                else:
                    style = PathStyle.SOLID if confirmed else PathStyle.DASHED
            else:
                label = f"{'Secondary' if rank == 1 else 'Tertiary'}: {_LABELS[direction]}"
                description = f"Pivot path if {ranked_dirs[0][0].value.lower()} structure fails."
                style = PathStyle.DASHED if is_waiting else PathStyle.DOTTED

            scenarios.append(Scenario(
                direction=direction,
                probability=prob,
                label=label,
                description=description,
                style=style,
                is_confirmed=confirmed,
                pathway=self.pathway(state, direction, setup) if rank < 2 else (),
            ))

        result = ScenarioSet(
            primary=scenarios[0],
            secondary=scenarios[1],
            ranked=tuple(scenarios),
            is_waiting=is_waiting,
            waiting_condition=waiting,
        )
        logger.debug(
            f"{state.symbol} scenarios up={up:.2f} down={down:.2f} range={range_:.2f}"
            f"{f' waiting={waiting}' if waiting else ''}"
        )
        return result
