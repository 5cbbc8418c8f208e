import unittest
from datetime import datetime, timedelta, timezone

from edge_pipeline.market_state import MarketCycle, MarketState, MultiTimeframeBias, NewsEvent
from edge_pipeline.scenarios import ScenarioEngine, imminent_news
from edge_pipeline.signals.obligations import Obligation, ObligationSet
from edge_pipeline.signals.order_book import DepthLevel, DepthSnapshot
from edge_pipeline.signals.structure import LiquidityPool
from edge_pipeline.types import (
    Bias,
    EdgeScore,
    MarketRegime,
    PathStyle,
    ScenarioDirection,
    Setup,
    VolatilityRegime,
)

T0 = datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
LONG = Setup(Bias.BULLISH, 100.0, 99.0, (103.0,))
BULLISH_HTF = MultiTimeframeBias(Bias.BULLISH, 0.8)


def _state(**kwargs):
    fields = dict(symbol="BTCUSDT", timeframe="1h", timestamp=T0, price=100.0, candle_count=200, last_candle=None, atr=1.0)
    fields.update(kwargs)
    return MarketState(**fields)


def _edge(points):
    return EdgeScore(score=points / 10, label="", points=points)


def _magnet(urgency, price=101.0):
    return ObligationSet((Obligation("BUY_SIDE_LIQUIDITY", price, urgency, "magnet"),), "OBLIGATED")


class TestProbabilities(unittest.TestCase):
    def setUp(self):
        self.engine = ScenarioEngine()

    def assertTriple(self, actual, expected):
        for a, e in zip(actual, expected):
            self.assertAlmostEqual(a, e)

    def test_no_signal_leans_range(self):
        probs, waiting = self.engine.probabilities(_state())
        self.assertTriple(probs, (0.15, 0.15, 0.7))
        self.assertIsNone(waiting)

    def test_waiting_states(self):
        news = _state(news_events=(NewsEvent(T0 + timedelta(minutes=45), "HIGH", "USD"),))
        probs, waiting = self.engine.probabilities(news, LONG)
        self.assertTriple(probs, (0.2, 0.2, 0.6))
        self.assertEqual(waiting, "NEWS PENDING")

        chop = _state(volatility=VolatilityRegime.LOW, regime=MarketRegime.RANGING)
        self.assertEqual(self.engine.probabilities(chop, LONG)[1], "LOW VOLATILITY")

        empty = _state(obligations=ObligationSet())
        probs, waiting = self.engine.probabilities(empty, LONG)
        self.assertTriple(probs, (0.1, 0.1, 0.8))
        self.assertEqual(waiting, "NO OBLIGATION")

    def test_distant_or_minor_news_does_not_wait(self):
        later = _state(news_events=(NewsEvent(T0 + timedelta(hours=3), "HIGH"),))
        minor = _state(news_events=(NewsEvent(T0 + timedelta(minutes=5), "MEDIUM"),))
        self.assertIsNone(self.engine.probabilities(later, LONG)[1])
        self.assertIsNone(imminent_news(minor, 60))

    def test_directional_news_still_waits(self):
        for bias in (Bias.BULLISH, Bias.BEARISH):
            event = NewsEvent(T0 + timedelta(minutes=10), "HIGH", "USD", directional_bias=bias)
            probs, waiting = self.engine.probabilities(_state(mtf=BULLISH_HTF, news_events=(event,)), LONG)
            self.assertTriple(probs, (0.2, 0.2, 0.6))
            self.assertEqual(waiting, "NEWS PENDING")

    def test_news_shift_before_waiting_gate(self):
        opposing = NewsEvent(T0 + timedelta(minutes=10), "HIGH", "USD", directional_bias=Bias.BEARISH)
        aligned = NewsEvent(T0 + timedelta(minutes=45), "HIGH", "USD", directional_bias=Bias.BULLISH)
        up, down = self.engine._directional_probabilities(_state(mtf=BULLISH_HTF, news_events=(opposing,)), LONG, 50)
        self.assertAlmostEqual(up, 0.35)
        self.assertAlmostEqual(down, 0.45)
        up, down = self.engine._directional_probabilities(_state(mtf=BULLISH_HTF, news_events=(aligned,)), LONG, 50)
        self.assertAlmostEqual(up, 0.70)
        self.assertAlmostEqual(down, 0.15)

    def test_trend_aligned_setup(self):
        probs, _ = self.engine.probabilities(_state(mtf=BULLISH_HTF), LONG)
        self.assertTriple(probs, (0.65, 0.15, 0.2))

    def test_counter_trend_setup(self):
        state = _state(mtf=MultiTimeframeBias(Bias.BEARISH, 0.8))
        self.assertTriple(self.engine.probabilities(state, LONG, 50)[0], (0.35, 0.45, 0.2))
        self.assertTriple(self.engine.probabilities(state, LONG, 80)[0], (0.55, 0.25, 0.2))

    def test_directional_cap(self):
        probs, _ = self.engine.probabilities(_state(mtf=BULLISH_HTF, obligations=_magnet(90)), LONG)
        self.assertTriple(probs, (0.75, 0.0, 0.25))

    def test_obligation_sets_bias_without_setup(self):
        probs, _ = self.engine.probabilities(_state(obligations=_magnet(60)))
        self.assertTriple(probs, (0.5, 0.3, 0.2))

    def test_always_calibrated(self):
        states = [
            _state(),
            _state(mtf=BULLISH_HTF, obligations=_magnet(95)),
            _state(mtf=MultiTimeframeBias(Bias.BEARISH), obligations=_magnet(85, price=99.0)),
        ]
        for state in states:
            for setup in (None, LONG, Setup(Bias.BEARISH, 100.0, 101.0, (97.0,))):
                up, down, range_ = self.engine.probabilities(state, setup, 90)[0]
                self.assertAlmostEqual(up + down + range_, 1.0, delta=1e-6)
                self.assertLessEqual(up, 0.75 + 1e-9)
                self.assertLessEqual(down, 0.75 + 1e-9)
                self.assertGreaterEqual(range_, 0.0)


class TestScenarioSet(unittest.TestCase):
    def setUp(self):
        self.engine = ScenarioEngine()

    def test_range_primary(self):
        scenarios = self.engine.generate_scenarios(_state())
        self.assertIs(scenarios.primary.direction, ScenarioDirection.RANGE)
        self.assertEqual(scenarios.primary.label, "Primary: Consolidation")
        self.assertIs(scenarios.primary.style, PathStyle.SOLID)
        # Equal up/down keep their natural order
        self.assertIs(scenarios.secondary.direction, ScenarioDirection.UP)
        self.assertIs(scenarios.secondary.style, PathStyle.DOTTED)
        self.assertEqual([(p.kind, p.price) for p in scenarios.primary.pathway], [("START", 100.0), ("TARGET", 100.0)])
        self.assertEqual(scenarios.ranked[2].pathway, ())

    def test_waiting_styles(self):
        state = _state(news_events=(NewsEvent(T0 + timedelta(minutes=10), "HIGH", "USD"),))
        scenarios = self.engine.generate_scenarios(state, [LONG], [_edge(80)])
        self.assertTrue(scenarios.is_waiting)
        self.assertEqual(scenarios.waiting_condition, "NEWS PENDING")
        self.assertEqual(scenarios.primary.label, "WAITING: NEWS PENDING")
        self.assertIs(scenarios.primary.style, PathStyle.DOTTED)
        self.assertIs(scenarios.secondary.style, PathStyle.DASHED)

    def test_confirmed_primary_is_solid(self):
        scenarios = self.engine.generate_scenarios(_state(mtf=BULLISH_HTF), [LONG], [_edge(50)])
        primary = scenarios.primary
        self.assertIs(primary.direction, ScenarioDirection.UP)
        self.assertTrue(primary.is_confirmed)
        self.assertIs(primary.style, PathStyle.SOLID)
        self.assertEqual([(p.kind, p.price) for p in primary.pathway], [("START", 100.0), ("TARGET", 103.0)])
        self.assertAlmostEqual(scenarios.probability_of(ScenarioDirection.UP), 0.65)

    def test_unconfirmed_primary_is_dashed(self):
        weak = self.engine.generate_scenarios(_state(), [LONG], [_edge(50)])
        self.assertIs(weak.primary.direction, ScenarioDirection.UP)
        self.assertFalse(weak.primary.is_confirmed)
        self.assertIs(weak.primary.style, PathStyle.DASHED)

        strong = self.engine.generate_scenarios(_state(), [LONG], [_edge(65)])
        self.assertIs(strong.primary.style, PathStyle.SOLID)


class TestPathway(unittest.TestCase):
    def setUp(self):
        self.engine = ScenarioEngine()

    def test_pullback_pivot_and_projection(self):
        setup = Setup(Bias.BULLISH, 99.0, 98.0, (102.0,))
        path = self.engine.pathway(_state(), ScenarioDirection.UP, setup)
        self.assertEqual([(p.kind, p.price) for p in path], [("START", 100.0), ("PIVOT", 99.0), ("TARGET", 102.0)])

        projected = self.engine.pathway(_state(), ScenarioDirection.DOWN, None)
        self.assertAlmostEqual(projected[-1].price, 98.0)

    def test_judas_swing(self):
        state = _state(
            market_cycle=MarketCycle("MANIPULATION", Bias.BEARISH),
            liquidity_pools=(LiquidityPool(99.5, "SELL_SIDE", 150, 49),),
        )
        path = self.engine.pathway(state, ScenarioDirection.UP, LONG)
        self.assertEqual(path[1].kind, "MANIPULATION")
        self.assertEqual(path[1].price, 99.5)
        self.assertEqual(path[1].label, "Judas Swing")

    def test_opposing_wall_pulls_target(self):
        asks = tuple(DepthLevel(100.1 + i * 0.1, 1) for i in range(7)) + (DepthLevel(101.5, 50),)
        state = _state(depth_snapshot=DepthSnapshot(bids=(DepthLevel(99.9, 1),), asks=asks))
        path = self.engine.pathway(state, ScenarioDirection.UP, LONG)
        self.assertEqual(path[-1].price, 101.5)


if __name__ == "__main__":
    unittest.main()
