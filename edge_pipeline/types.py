"""
Core type definitions for the edge pipeline.

This module contains the enums and value objects shared by the signal
extractors, the scoring engine, the scenario engine, the compressor,
the execution router and the backtester. Every value object is frozen:
a snapshot is built once per evaluation tick and superseded, never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

_BULLISH_EXACT = {"UP", "BUY"}
_BEARISH_EXACT = {"DOWN", "SELL"}


class Bias(Enum):
    """Canonical direction. Every textual direction is folded into this."""
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"

    @classmethod
    def parse(cls, value: object) -> "Bias":
        """
        Normalize a direction from any upstream vocabulary.

        "LONG", "BULLISH_SWEEP", "up" and "BUY" are all BULLISH; "SHORT",
        "BEARISH_FVG", "down" and "SELL" are all BEARISH; anything else,
        including None, is NEUTRAL.
        """
        if isinstance(value, Bias):
            return value
        if value is None:
            return cls.NEUTRAL
        text = str(value).strip().upper()
        if "BULL" in text or "LONG" in text or text in _BULLISH_EXACT:
            return cls.BULLISH
        if "BEAR" in text or "SHORT" in text or text in _BEARISH_EXACT:
            return cls.BEARISH
        return cls.NEUTRAL

    @property
    def opposite(self) -> "Bias":
        if self is Bias.BULLISH:
            return Bias.BEARISH
        if self is Bias.BEARISH:
            return Bias.BULLISH
        return Bias.NEUTRAL

    @property
    def is_directional(self) -> bool:
        return self is not Bias.NEUTRAL

    @property
    def sign(self) -> int:
        return {Bias.BULLISH: 1, Bias.BEARISH: -1}.get(self, 0)


class PredictionBias(Enum):
    """Bias of a compressed forecast, including the explicit waiting states."""
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"
    WAIT_RANGE = "WAIT_RANGE"
    WAIT_NEWS = "WAIT_NEWS"
    WAIT_CONFLICT = "WAIT_CONFLICT"

    @property
    def direction(self) -> Bias:
        if self is PredictionBias.BULLISH:
            return Bias.BULLISH
        if self is PredictionBias.BEARISH:
            return Bias.BEARISH
        return Bias.NEUTRAL

    @property
    def is_waiting(self) -> bool:
        return self.value.startswith("WAIT")

    @classmethod
    def from_bias(cls, bias: Bias) -> "PredictionBias":
        return cls(bias.value)


class MarketRegime(Enum):
    TRENDING = "TRENDING"
    RANGING = "RANGING"


class VolatilityRegime(Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar. Sequences are assumed chronological and gap-free."""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def upper_wick(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_wick(self) -> float:
        return min(self.open, self.close) - self.low

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def typical_price(self) -> float:
        return (self.high + self.low + self.close) / 3


@dataclass(frozen=True)
class Setup:
    """
    A candidate trade idea produced by a setup detector.

    ``risk_reward`` is derived from entry, stop and first target when the
    detector does not supply one.
    """
    direction: Bias
    entry: float
    stop_loss: float
    targets: Tuple[float, ...]
    strategy_id: str = "GENERIC"
    risk_reward: Optional[float] = None
    directional_confidence: Optional[float] = None
    has_fibonacci_confluence: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "direction", Bias.parse(self.direction))
        object.__setattr__(self, "targets", tuple(self.targets))
        if self.risk_reward is None:
            object.__setattr__(self, "risk_reward", self._computed_rr())

    def _computed_rr(self) -> float:
        if not self.targets:
            return 0.0
        risk = abs(self.entry - self.stop_loss)
        if risk <= 0:
            return 0.0
        return abs(self.targets[0] - self.entry) / risk

    @property
    def primary_target(self) -> Optional[float]:
        return self.targets[0] if self.targets else None


@dataclass(frozen=True)
class StrategyReliability:
    """Historical reliability of the strategy that produced a setup."""
    probability: float = 0.5
    dynamic_weight: float = 1.0


@dataclass(frozen=True)
class Contribution:
    """
    Signed contribution of one scoring rule.

    ``is_risk`` follows the sign of ``points`` unless given: a weak R:R
    still adds a few points but is reported as a risk.
    """
    rule: str
    points: float
    reason: str
    is_risk: Optional[bool] = None

    def __post_init__(self) -> None:
        if self.is_risk is None:
            object.__setattr__(self, "is_risk", self.points < 0)

    @property
    def is_positive(self) -> bool:
        return not self.is_risk


@dataclass(frozen=True)
class EdgeScore:
    score: float
    label: str
    points: float
    positives: Tuple[str, ...] = ()
    risks: Tuple[str, ...] = ()
    contributions: Tuple[Contribution, ...] = ()


@dataclass(frozen=True)
class LiquidityRun:
    probability: float
    target: Optional[float]
    kind: str = ""


@dataclass(frozen=True)
class ProbabilityTriple:
    """
    Continuation / reversal / consolidation probabilities summing to 1.0.

    ``raw`` keeps the independent 0-100 evidence scores the triple was
    normalized from; the compressor's gates are expressed on that scale.
    """
    continuation: float
    reversal: float
    consolidation: float
    liquidity_run: Optional[LiquidityRun] = None
    raw: Tuple[float, ...] = ()

    @classmethod
    def normalized(
        cls,
        continuation: float,
        reversal: float,
        consolidation: float,
        liquidity_run: Optional[LiquidityRun] = None,
        raw: Tuple[float, ...] = (),
    ) -> "ProbabilityTriple":
        values = [max(0.0, continuation), max(0.0, reversal), max(0.0, consolidation)]
        total = sum(values)
        if total <= 0:
            values = [1 / 3, 1 / 3, 1 / 3]
        else:
            values = [v / total for v in values]
        return cls(values[0], values[1], values[2], liquidity_run, tuple(raw))

    @property
    def maximum(self) -> float:
        return max(self.continuation, self.reversal, self.consolidation)

    @property
    def scores(self) -> Tuple[float, float, float]:
        """(continuation, reversal, consolidation) on the 0-100 evidence scale."""
        if len(self.raw) == 3:
            return (self.raw[0], self.raw[1], self.raw[2])
        return (self.continuation * 100, self.reversal * 100, self.consolidation * 100)


class ScenarioDirection(Enum):
    UP = "UP"
    DOWN = "DOWN"
    RANGE = "RANGE"

    @property
    def bias(self) -> Bias:
        if self is ScenarioDirection.UP:
            return Bias.BULLISH
        if self is ScenarioDirection.DOWN:
            return Bias.BEARISH
        return Bias.NEUTRAL


class PathStyle(Enum):
    SOLID = "SOLID"
    DASHED = "DASHED"
    DOTTED = "DOTTED"


@dataclass(frozen=True)
class PathPoint:
    price: float
    kind: str  # START | MANIPULATION | PIVOT | TARGET
    bars_offset: int = 0
    label: str = ""


@dataclass(frozen=True)
class Scenario:
    direction: ScenarioDirection
    probability: float
    label: str
    description: str = ""
    style: PathStyle = PathStyle.SOLID
    is_confirmed: bool = False
    pathway: Tuple[PathPoint, ...] = ()

    @property
    def bias(self) -> Bias:
        return self.direction.bias


@dataclass(frozen=True)
class ScenarioSet:
    primary: Scenario
    secondary: Scenario
    ranked: Tuple[Scenario, ...]
    is_waiting: bool = False
    waiting_condition: Optional[str] = None

    def probability_of(self, direction: ScenarioDirection) -> float:
        for scenario in self.ranked:
            if scenario.direction is direction:
                return scenario.probability
        return 0.0


@dataclass(frozen=True)
class Horizons:
    immediate: str
    session: str
    htf: str


@dataclass(frozen=True)
class Prediction:
    """The single compressed forecast for one symbol/timeframe tick."""
    id: str
    symbol: str
    timeframe: str
    bias: PredictionBias
    target: Optional[float]
    invalidation: Optional[float]
    confidence: int
    edge_score: float
    edge_label: str
    reason: str
    horizons: Horizons
    validity_conditions: Tuple[str, ...]
    created_at: datetime
    expires_at: datetime
    positives: Tuple[str, ...] = ()
    risks: Tuple[str, ...] = ()
    snapshot: Mapping[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class Suppression:
    """Why a forecast is withheld. Not an error: a valid, expected outcome."""
    reasons: Tuple[str, ...]

    @property
    def reason(self) -> str:
        return "; ".join(self.reasons)


@dataclass(frozen=True)
class CompressionResult:
    prediction: Prediction
    suppression: Optional[Suppression] = None

    @property
    def is_suppressed(self) -> bool:
        return self.suppression is not None


class ExecutionType(Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    LIMIT_CHASE = "LIMIT_CHASE"
    LIMIT_PASSIVE = "LIMIT_PASSIVE"
    ICEBERG = "ICEBERG"
    TWAP = "TWAP"


class Urgency(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class OrderSide(Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class ExecutionDecision:
    type: ExecutionType
    parameters: Dict[str, object] = field(default_factory=dict)
    reasons: Tuple[str, ...] = ()


class TradeOutcome(Enum):
    TP = "TP"
    SL = "SL"
    TIMEOUT = "TIMEOUT"


@dataclass(frozen=True)
class Trade:
    """A simulated trade. Immutable once recorded."""
    entry: float
    stop_loss: float
    take_profit: float
    direction: Bias
    outcome: TradeOutcome
    pnl: float
    pnl_percent: float
    time: datetime
    entry_time: Optional[datetime] = None
    strategy_id: str = "GENERIC"
    factors: Mapping[str, bool] = field(default_factory=dict)

    @property
    def is_win(self) -> bool:
        return self.pnl > 0
