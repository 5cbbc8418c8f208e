"""
Prediction Compressor

Reduces a full analysis (market state, setups, probabilities) to one
forecast: bias, target, invalidation, confidence, edge score and a
one-sentence reason.

Bias priority:

    1. consolidation > 60                       NEUTRAL
    2. fresh CHoCH with reversal support        CHoCH direction
    3. continuation >= 60                       trend (HTF when flat)
    4. reversal >= 65                           against the trend
    5. ranging, both below 55                   WAIT_RANGE
    6. HIGH news shock                          WAIT_NEWS
    7. HTF / LTF disagree                       rejection, CHoCH or the
                                                stronger side, else WAIT_CONFLICT
    8. otherwise                                HTF bias

Probability gates are on the 0-100 evidence scale of the estimator.

The suppression guardrail is separate from compression: a suppressed
prediction is still built, it just carries the reasons it should not
be shown.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence, Tuple

from .errors import ensure_finite
from .market_state import MarketState
from .scoring.engine import EdgeScoringEngine
from .types import (
    Bias,
    CompressionResult,
    EdgeScore,
    Horizons,
    MarketRegime,
    Prediction,
    PredictionBias,
    ProbabilityTriple,
    Setup,
    StrategyReliability,
    Suppression,
)

logger = logging.getLogger(__name__)

EXPIRY = {
    "1m": timedelta(minutes=15),
    "5m": timedelta(hours=1),
    "15m": timedelta(hours=3),
    "1h": timedelta(hours=8),
    "4h": timedelta(hours=24),
    "1d": timedelta(days=7),
}

POI_WEIGHTS = {"LIQUIDITY": 1.0, "ORDER_BLOCK": 0.8, "GAP": 0.6}
NEUTRAL_CONFIDENCE = 30
MAGNET_SUPPRESSION_URGENCY = 85
STRONG_REVERSAL = 75
OBLIGATED_MIN_PROBABILITY = 45
FREE_ROAMING_MIN_PROBABILITY = 70


def prediction_id(symbol: str, timeframe: str, at: datetime) -> str:
    """Stable for every evaluation of the same symbol/timeframe inside one UTC hour."""
    ts = at if at.tzinfo is not None else at.replace(tzinfo=timezone.utc)
    ts = ts.astimezone(timezone.utc)
    letters = re.sub(r"[^A-Za-z]", "", symbol)
    hour_slot = math.floor(ts.timestamp() / 3600)
    return f"{letters}-{timeframe}-{ts:%Y%m%d}-{str(hour_slot)[-3:]}"


def expiry_for(timeframe: str, at: datetime) -> datetime:
    return at + EXPIRY.get(timeframe.lower(), EXPIRY["1h"])


def _utc(at: datetime) -> datetime:
    return at if at.tzinfo is not None else at.replace(tzinfo=timezone.utc)


class PredictionCompressor:
    """Compresses one evaluation tick into a Prediction."""

    def __init__(self, scoring: Optional[EdgeScoringEngine] = None):
        self.scoring = scoring or EdgeScoringEngine()

    # ── Bias ─────────────────────────────────────────────────────────

    @staticmethod
    def determine_bias(state: MarketState, probabilities: ProbabilityTriple) -> PredictionBias:
        continuation, reversal, consolidation = probabilities.scores
        htf = state.htf_bias
        trend = state.trend

        if consolidation > 60:
            return PredictionBias.NEUTRAL

        choch = state.latest_event("CHOCH")
        choch_age = state.candles_since(choch) if choch is not None else None
        if choch is not None:
            if choch_age < 10 and reversal >= 50:
                return PredictionBias.from_bias(choch.direction)
            if choch_age < 20 and reversal >= 60:
                return PredictionBias.from_bias(choch.direction)

        if continuation >= 60:
            return PredictionBias.from_bias(trend if trend.is_directional else htf)

        if reversal >= 65:
            return PredictionBias.from_bias(trend.opposite)

        if state.regime is MarketRegime.RANGING and continuation < 55 and reversal < 55:
            return PredictionBias.WAIT_RANGE

        if state.has_high_news_shock:
            return PredictionBias.WAIT_NEWS

        if htf.is_directional and trend.is_directional and htf is not trend:
            # A rejection wick in the HTF direction means the LTF move is the fakeout
            if state.rejection is htf:
                return PredictionBias.from_bias(htf)
            if choch is not None and choch_age < 15:
                return PredictionBias.from_bias(choch.direction)
            htf_strength = state.mtf.confidence if state.mtf is not None else 0.0
            ltf_strength = state.confidence
            if htf_strength > 0.8 and ltf_strength < 0.5:
                return PredictionBias.from_bias(htf)
            if ltf_strength > 0.8 and htf_strength < 0.5:
                return PredictionBias.from_bias(trend)
            return PredictionBias.WAIT_CONFLICT

        return PredictionBias.from_bias(htf)

    # ── Target and invalidation ──────────────────────────────────────

    @staticmethod
    def points_of_interest(state: MarketState, bias: Bias) -> List[Tuple[float, float]]:
        """(price, weight) ahead of price in the bias direction, nearest first."""
        price = state.price

        def ahead(level: float) -> bool:
            return level > price if bias is Bias.BULLISH else level < price

        pois: List[Tuple[float, float]] = []
        pois.extend((p.price, POI_WEIGHTS["LIQUIDITY"]) for p in state.liquidity_pools if not p.swept and ahead(p.price))
        pois.extend((ob.midpoint, POI_WEIGHTS["ORDER_BLOCK"]) for ob in state.order_blocks if ahead(ob.midpoint))
        pois.extend((g.price, POI_WEIGHTS["GAP"]) for g in state.fair_value_gaps if not g.mitigated and ahead(g.price))
        pois.sort(key=lambda poi: abs(poi[0] - price))
        return pois

    def select_target(
        self,
        state: MarketState,
        bias: PredictionBias,
        setups: Sequence[Setup],
        probabilities: ProbabilityTriple,
    ) -> Optional[float]:
        direction = bias.direction
        if not direction.is_directional:
            return None

        pois = self.points_of_interest(state, direction)
        if len(pois) > 1:
            cluster = pois[:3]
            return sum(p * w for p, w in cluster) / sum(w for _, w in cluster)

        run = probabilities.liquidity_run
        if run is not None and run.probability > 60 and run.target is not None:
            return run.target

        setup = next((s for s in setups if s.direction is direction), None)
        if setup is not None and setup.primary_target is not None:
            return setup.primary_target

        return pois[0][0] if pois else None

    @staticmethod
    def define_invalidation(state: MarketState, bias: PredictionBias, setups: Sequence[Setup]) -> Optional[float]:
        direction = bias.direction
        if not direction.is_directional:
            return None
        setup = next((s for s in setups if s.direction is direction), None)
        if setup is not None:
            return setup.stop_loss
        kind = "LOW" if direction is Bias.BULLISH else "HIGH"
        swings = [s for s in state.swings if s.kind == kind]
        return swings[-1].price if swings else None

    # ── Confidence ───────────────────────────────────────────────────

    @staticmethod
    def path_clearance_penalty(state: MarketState, bias: Bias) -> int:
        """Volume-profile levels standing between price and the move, capped at 30."""
        profile = state.volume_profile
        if profile is None:
            return 0
        price = state.price
        penalty = 0
        if bias is Bias.BULLISH:
            if price < profile.poc:
                penalty += 15
            if price < profile.value_area_high:
                penalty += 10
        elif bias is Bias.BEARISH:
            if price > profile.poc:
                penalty += 15
            if price > profile.value_area_low:
                penalty += 10
        return min(penalty, 30)

    @staticmethod
    def session_modifier(state: MarketState) -> int:
        session = state.session
        if session is None or session.session == "CLOSED":
            return 0
        modifier = 0
        if session.session == "ASIAN":
            modifier -= 10
        if session.killzone is not None:
            modifier += 5
        # London / New York overlap
        if session.session == "LONDON" and 13 <= session.hour < 16:
            modifier += 10
        return modifier

    @staticmethod
    def momentum_modifier(state: MarketState, bias: Bias) -> int:
        bullish_div = any(d.direction is Bias.BULLISH for d in state.divergences)
        bearish_div = any(d.direction is Bias.BEARISH for d in state.divergences)
        bonus = 0
        if (bias is Bias.BULLISH and bullish_div) or (bias is Bias.BEARISH and bearish_div):
            bonus += 10
        if (bias is Bias.BULLISH and bearish_div) or (bias is Bias.BEARISH and bullish_div):
            bonus -= 15
        return bonus

    def calculate_confidence(self, state: MarketState, bias: PredictionBias, probabilities: ProbabilityTriple) -> int:
        direction = bias.direction
        if not direction.is_directional:
            return NEUTRAL_CONFIDENCE

        continuation, reversal, _ = probabilities.scores
        confidence = max(continuation, reversal) / 100 * 50

        if state.htf_bias is direction:
            confidence += 25
        elif not state.htf_bias.is_directional:
            confidence += 12

        if state.mtf_aligned:
            confidence += 15
        if state.volume_analysis is not None and state.volume_analysis.is_institutional:
            confidence += 10

        confidence -= self.path_clearance_penalty(state, direction)

        traps = state.trap_zones
        if traps is not None and (traps.warning or traps.count > 0):
            confidence -= 25

        if state.velocity > 1.2:
            confidence += 15
        elif state.velocity < 0.5:
            confidence -= 10

        confidence += self.session_modifier(state)

        macro = state.macro_bias
        if macro is not None and macro.bias.is_directional and macro.bias is direction.opposite:
            confidence -= 20

        confidence += self.momentum_modifier(state, direction)

        ensure_finite(confidence, "prediction confidence")
        return int(round(min(max(confidence, 0), 100)))

    # ── Narrative ────────────────────────────────────────────────────

    @staticmethod
    def generate_reason(state: MarketState, bias: PredictionBias, probabilities: ProbabilityTriple) -> str:
        if bias is PredictionBias.NEUTRAL:
            return "Market in consolidation. Awaiting directional catalyst."
        if bias is PredictionBias.WAIT_RANGE:
            return "Ranging market without directional conviction. Awaiting range break."
        if bias is PredictionBias.WAIT_NEWS:
            return "High-impact news shock in progress. Awaiting volatility to settle."
        if bias is PredictionBias.WAIT_CONFLICT:
            return "Higher and lower timeframe structure disagree. Awaiting alignment."

        components: List[str] = []
        if state.htf_bias is bias.direction:
            components.append("HTF liquidity draw")
        if state.mtf_aligned:
            components.append("MTF structure alignment")
        elif any(e.kind == "BOS" for e in state.structure_events):
            components.append("LTF BOS confluence")

        run = probabilities.liquidity_run
        if run is not None and run.probability > 60:
            components.append(f"{run.kind.lower()} liquidity target")
        if state.volume_analysis is not None and state.volume_analysis.is_institutional:
            components.append("institutional volume")
        if state.velocity > 1.2:
            components.append("velocity-supported")
        if state.relevant_gap is not None:
            components.append("magnetic imbalance")

        if not components:
            components.append("technical alignment")
        return " + ".join(components) + "."

    @staticmethod
    def build_horizons(bias: PredictionBias) -> Horizons:
        direction = bias.direction
        if not direction.is_directional:
            return Horizons(immediate="Sideways", session="Wait for shift", htf="Neutral")
        side = "Buy-side" if direction is Bias.BULLISH else "Sell-side"
        other = "Sell-side" if direction is Bias.BULLISH else "Buy-side"
        return Horizons(
            immediate=f"Search for {other} liquidity",
            session=f"{side} expansion toward targets",
            htf=f"Maintenance of {side} structure",
        )

    # ── Guardrail ────────────────────────────────────────────────────

    @staticmethod
    def should_show_prediction(state: MarketState, probabilities: ProbabilityTriple) -> Optional[Suppression]:
        """None when the prediction may be shown, otherwise every reason it may not."""
        continuation, reversal, consolidation = probabilities.scores
        reasons: List[str] = []

        if state.has_high_news_shock:
            reasons.append(f"High-impact news shock active ({state.news_shock.event})")

        htf, ltf = state.htf_bias, state.trend
        if htf.is_directional and ltf.is_directional and htf is not ltf and reversal < STRONG_REVERSAL:
            reasons.append(
                f"HTF/LTF conflict ({htf.value} vs {ltf.value}) without strong reversal ({reversal:.0f} < {STRONG_REVERSAL})"
            )

        if state.trap_zones is not None and state.trap_zones.warning:
            reasons.append(f"Inside trap zone: {state.trap_zones.warning}")

        primary = state.primary_obligation
        if primary is not None and primary.urgency > MAGNET_SUPPRESSION_URGENCY:
            magnet = Bias.BULLISH if primary.price > state.price else Bias.BEARISH
            predicted = ltf if continuation > reversal else ltf.opposite
            if magnet is not predicted:
                reasons.append(
                    f"Opposing magnet {primary.kind} (urgency {primary.urgency:.0f}) against predicted {predicted.value}"
                )

        threshold = OBLIGATED_MIN_PROBABILITY if state.obligation_state == "OBLIGATED" else FREE_ROAMING_MIN_PROBABILITY
        strongest = max(continuation, reversal, consolidation)
        if strongest < threshold:
            reasons.append(f"Weak probabilities (max {strongest:.0f} < {threshold} for {state.obligation_state})")

        return Suppression(tuple(reasons)) if reasons else None

    # ── Public API ───────────────────────────────────────────────────

    def compress(
        self,
        state: MarketState,
        setups: Sequence[Setup],
        probabilities: ProbabilityTriple,
        reliability: Optional[StrategyReliability] = None,
    ) -> CompressionResult:
        bias = self.determine_bias(state, probabilities)
        target = self.select_target(state, bias, setups, probabilities)
        invalidation = self.define_invalidation(state, bias, setups)
        confidence = self.calculate_confidence(state, bias, probabilities)

        relevant = next((s for s in setups if s.direction is bias.direction), setups[0] if setups else None)
        edge: EdgeScore = self.scoring.score(relevant, state, reliability)

        if target is not None:
            ensure_finite(target, "prediction target")

        created_at = _utc(state.timestamp)
        validity = []
        if invalidation is not None:
            side = "above" if bias.direction is Bias.BULLISH else "below"
            validity.append(f"Price stays {side} {invalidation:.6g}")
        validity.append(f"HTF {state.htf_bias.value} structure remains intact")
        validity.append("No high-impact news releases within 15 mins")

        prediction = Prediction(
            id=prediction_id(state.symbol, state.timeframe, created_at),
            symbol=state.symbol,
            timeframe=state.timeframe,
            bias=bias,
            target=target,
            invalidation=invalidation,
            confidence=confidence,
            edge_score=edge.score,
            edge_label=edge.label,
            reason=self.generate_reason(state, bias, probabilities),
            horizons=self.build_horizons(bias),
            validity_conditions=tuple(validity),
            created_at=created_at,
            expires_at=expiry_for(state.timeframe, created_at),
            positives=edge.positives,
            risks=edge.risks,
            snapshot={
                "price": state.price,
                "regime": state.regime.value,
                "volatility": state.volatility.value,
                "trend": state.trend.value,
            },
        )

        suppression = self.should_show_prediction(state, probabilities)
        if suppression is not None:
            logger.warning(f"{prediction.id} suppressed: {suppression.reason}")
        else:
            logger.info(
                f"{prediction.id} {bias.value} conf={confidence} edge={edge.score} ({edge.label}) "
                f"target={target if target is None else f'{target:.6g}'}"
            )
        return CompressionResult(prediction=prediction, suppression=suppression)
