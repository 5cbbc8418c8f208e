import logging
import unittest

from edge_pipeline.backtest.data import SyntheticCandleProvider
from edge_pipeline.market_state import ExternalContext, MultiTimeframeBias
from edge_pipeline.pipeline import ForecastPipeline
from edge_pipeline.types import Bias


def setUpModule():
    logging.disable(logging.CRITICAL)


def tearDownModule():
    logging.disable(logging.NOTSET)


class TestForecastPipeline(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.candles = SyntheticCandleProvider(seed=4).generate(260, "1h", "BTCUSDT")

    def test_evaluation_is_deterministic(self):
        first = ForecastPipeline().evaluate("BTCUSDT", "1h", self.candles)
        second = ForecastPipeline().evaluate("BTCUSDT", "1h", self.candles)
        self.assertEqual(first.compression, second.compression)
        self.assertEqual(first.setups, second.setups)
        self.assertEqual(first.probabilities, second.probabilities)

    def test_result_shape(self):
        result = ForecastPipeline().evaluate("BTCUSDT", "1h", self.candles)
        prediction = result.compression.prediction

        self.assertEqual(result.state.price, self.candles[-1].close)
        self.assertTrue(prediction.id.startswith("BTCUSDT-1h-"))
        self.assertGreaterEqual(prediction.confidence, 0)
        self.assertLessEqual(prediction.confidence, 100)
        self.assertAlmostEqual(
            result.probabilities.continuation + result.probabilities.reversal + result.probabilities.consolidation,
            1.0,
        )
        self.assertGreaterEqual(result.scenarios.primary.probability, 0.0)
        self.assertLessEqual(result.scenarios.primary.probability, 1.0)
        self.assertEqual(len(result.setups), len(result.scores))

    def test_setups_are_ranked_by_points(self):
        result = ForecastPipeline().evaluate("BTCUSDT", "1h", self.candles)
        points = [score.points for score in result.scores]
        self.assertEqual(points, sorted(points, reverse=True))
        if result.setups:
            self.assertIs(result.best_setup, result.setups[0])
        else:
            self.assertIsNone(result.best_setup)

    def test_external_context_reaches_state(self):
        context = ExternalContext(mtf=MultiTimeframeBias(Bias.BEARISH, 0.9, source="EXTERNAL"))
        result = ForecastPipeline().evaluate("BTCUSDT", "1h", self.candles, context)
        self.assertEqual(result.state.htf_bias, Bias.BEARISH)

    def test_outcomes_feed_the_tracker(self):
        pipeline = ForecastPipeline()
        for _ in range(3):
            pipeline.record_outcome("LIQUIDITY_SWEEP", True)
        self.assertAlmostEqual(pipeline.tracker.dynamic_weight("LIQUIDITY_SWEEP"), 1.2)

    def test_empty_history_raises(self):
        with self.assertRaises(ValueError):
            ForecastPipeline().evaluate("BTCUSDT", "1h", [])


if __name__ == "__main__":
    unittest.main()
