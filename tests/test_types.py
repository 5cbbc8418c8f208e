import unittest
from datetime import datetime, timezone

from edge_pipeline.types import (
    Bias,
    Candle,
    Contribution,
    PredictionBias,
    ProbabilityTriple,
    Scenario,
    ScenarioDirection,
    ScenarioSet,
    Setup,
)


class TestBias(unittest.TestCase):
    def test_parse_vocabularies(self):
        for text in ("LONG", "bullish_sweep", "up", "BUY", "BULLISH_SMT"):
            self.assertIs(Bias.parse(text), Bias.BULLISH, text)
        for text in ("short", "BEARISH_FVG", "DOWN", "sell"):
            self.assertIs(Bias.parse(text), Bias.BEARISH, text)
        for value in (None, "", "sideways", "UPPER", 42):
            self.assertIs(Bias.parse(value), Bias.NEUTRAL, value)
        self.assertIs(Bias.parse(Bias.BEARISH), Bias.BEARISH)

    def test_helpers(self):
        self.assertIs(Bias.BULLISH.opposite, Bias.BEARISH)
        self.assertIs(Bias.NEUTRAL.opposite, Bias.NEUTRAL)
        self.assertEqual([b.sign for b in Bias], [1, -1, 0])
        self.assertFalse(Bias.NEUTRAL.is_directional)

    def test_prediction_bias(self):
        self.assertTrue(PredictionBias.WAIT_RANGE.is_waiting)
        self.assertFalse(PredictionBias.NEUTRAL.is_waiting)
        self.assertIs(PredictionBias.from_bias(Bias.BEARISH), PredictionBias.BEARISH)
        self.assertIs(PredictionBias.WAIT_NEWS.direction, Bias.NEUTRAL)


class TestValueObjects(unittest.TestCase):
    def test_candle_geometry(self):
        c = Candle(datetime(2024, 1, 1, tzinfo=timezone.utc), 100, 105, 98, 102, 10)
        self.assertEqual((c.range, c.body, c.upper_wick, c.lower_wick), (7, 2, 3, 2))
        self.assertTrue(c.is_bullish)

    def test_setup_risk_reward(self):
        self.assertEqual(Setup("LONG", 100, 99, [103]).risk_reward, 3.0)
        self.assertEqual(Setup(Bias.BEARISH, 100, 100, (98,)).risk_reward, 0.0)
        self.assertEqual(Setup(Bias.BEARISH, 100, 101, ()).risk_reward, 0.0)
        self.assertEqual(Setup(Bias.BULLISH, 100, 99, (103,), risk_reward=1.2).risk_reward, 1.2)
        self.assertIs(Setup("LONG", 100, 99, [103]).direction, Bias.BULLISH)

    def test_contribution_risk_flag(self):
        self.assertTrue(Contribution("trap", -30, "Trap").is_risk)
        self.assertTrue(Contribution("rr", 5, "Low R:R", is_risk=True).is_risk)
        self.assertTrue(Contribution("htf", 25, "Aligned").is_positive)

    def test_probability_triple(self):
        triple = ProbabilityTriple.normalized(60, 20, 20, raw=(60, 20, 20))
        self.assertAlmostEqual(triple.continuation + triple.reversal + triple.consolidation, 1.0)
        self.assertAlmostEqual(triple.continuation, 0.6)
        self.assertEqual(triple.scores, (60, 20, 20))
        self.assertAlmostEqual(triple.maximum, 0.6)

        flat = ProbabilityTriple.normalized(0, -5, 0)
        self.assertAlmostEqual(flat.reversal, 1 / 3)
        self.assertAlmostEqual(flat.scores[0], 100 / 3)

    def test_scenario_lookup(self):
        up = Scenario(ScenarioDirection.UP, 0.6, "Up")
        rng = Scenario(ScenarioDirection.RANGE, 0.4, "Range")
        scenarios = ScenarioSet(up, rng, (up, rng))
        self.assertEqual(scenarios.probability_of(ScenarioDirection.RANGE), 0.4)
        self.assertEqual(scenarios.probability_of(ScenarioDirection.DOWN), 0.0)
        self.assertIs(up.bias, Bias.BULLISH)


if __name__ == "__main__":
    unittest.main()
