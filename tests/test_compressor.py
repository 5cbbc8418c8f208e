import unittest
from datetime import datetime, timedelta, timezone

from edge_pipeline.compressor import PredictionCompressor, expiry_for, prediction_id
from edge_pipeline.market_state import MarketState, MultiTimeframeBias, NewsShock, TrapZones
from edge_pipeline.signals.obligations import Obligation, ObligationSet
from edge_pipeline.signals.structure import LiquidityPool, StructureEvent, SwingPoint
from edge_pipeline.types import Bias, LiquidityRun, MarketRegime, PredictionBias, ProbabilityTriple, Setup

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
LONG = Setup(Bias.BULLISH, 100.0, 99.0, (103.0,), strategy_id="ORDER_BLOCK_RETEST")


def _state(**kwargs):
    fields = dict(symbol="BTCUSDT", timeframe="1h", timestamp=T0, price=100.0, candle_count=200, last_candle=None)
    fields.update(kwargs)
    return MarketState(**fields)


def _probs(continuation, reversal, consolidation, run=None):
    return ProbabilityTriple.normalized(
        continuation, reversal, consolidation, liquidity_run=run, raw=(continuation, reversal, consolidation)
    )


def _choch(direction, index):
    return StructureEvent("CHOCH", direction, 100.0, index, T0)


class TestPredictionId(unittest.TestCase):
    def test_stable_within_the_hour(self):
        first = prediction_id("BTC/USDT", "1h", datetime(2024, 1, 1, 10, 5, tzinfo=timezone.utc))
        last = prediction_id("BTC/USDT", "1h", datetime(2024, 1, 1, 10, 55, tzinfo=timezone.utc))
        self.assertEqual(first, last)
        self.assertEqual(first, "BTCUSDT-1h-20240101-362")

    def test_changes_on_the_hour(self):
        before = prediction_id("BTCUSDT", "1h", datetime(2024, 1, 1, 10, 59, tzinfo=timezone.utc))
        after = prediction_id("BTCUSDT", "1h", datetime(2024, 1, 1, 11, 0, tzinfo=timezone.utc))
        self.assertNotEqual(before, after)

    def test_naive_and_offset_timestamps_are_utc(self):
        aware = prediction_id("EURUSD", "4h", datetime(2024, 1, 1, 10, 20, tzinfo=timezone.utc))
        naive = prediction_id("EURUSD", "4h", datetime(2024, 1, 1, 10, 20))
        offset = prediction_id("EURUSD", "4h", datetime(2024, 1, 1, 12, 20, tzinfo=timezone(timedelta(hours=2))))
        self.assertEqual(aware, naive)
        self.assertEqual(aware, offset)

    def test_date_is_taken_in_utc(self):
        at = datetime(2024, 1, 1, 1, 0, tzinfo=timezone(timedelta(hours=2)))
        self.assertIn("-20231231-", prediction_id("EURUSD", "1h", at))

    def test_expiry(self):
        self.assertEqual(expiry_for("1h", T0), T0 + timedelta(hours=8))
        self.assertEqual(expiry_for("4H", T0), T0 + timedelta(hours=24))
        self.assertEqual(expiry_for("1d", T0), T0 + timedelta(days=7))
        self.assertEqual(expiry_for("2h", T0), T0 + timedelta(hours=8))


class TestDetermineBias(unittest.TestCase):
    def bias(self, state, probs):
        return PredictionCompressor.determine_bias(state, probs)

    def test_consolidation_is_neutral(self):
        self.assertEqual(self.bias(_state(), _probs(10, 10, 70)), PredictionBias.NEUTRAL)

    def test_continuation_follows_trend(self):
        self.assertEqual(self.bias(_state(trend=Bias.BULLISH), _probs(65, 20, 15)), PredictionBias.BULLISH)

    def test_continuation_without_trend_follows_htf(self):
        state = _state(mtf=MultiTimeframeBias(Bias.BEARISH, 0.7))
        self.assertEqual(self.bias(state, _probs(65, 20, 15)), PredictionBias.BEARISH)

    def test_reversal_goes_against_trend(self):
        self.assertEqual(self.bias(_state(trend=Bias.BULLISH), _probs(20, 70, 10)), PredictionBias.BEARISH)

    def test_fresh_choch(self):
        state = _state(structure_events=(_choch(Bias.BEARISH, 195),))
        self.assertEqual(self.bias(state, _probs(40, 55, 10)), PredictionBias.BEARISH)
        # Reversal support too weak for a 4-candle-old CHoCH
        self.assertEqual(self.bias(state, _probs(40, 45, 10)), PredictionBias.WAIT_RANGE)

    def test_older_choch_needs_stronger_reversal(self):
        state = _state(structure_events=(_choch(Bias.BEARISH, 184),))
        self.assertEqual(self.bias(state, _probs(40, 62, 10)), PredictionBias.BEARISH)
        self.assertEqual(self.bias(state, _probs(40, 54, 10)), PredictionBias.WAIT_RANGE)

    def test_ranging_without_conviction(self):
        self.assertEqual(self.bias(_state(), _probs(40, 40, 30)), PredictionBias.WAIT_RANGE)

    def test_news_shock(self):
        state = _state(regime=MarketRegime.TRENDING, news_shock=NewsShock("CPI", "HIGH"))
        self.assertEqual(self.bias(state, _probs(50, 50, 10)), PredictionBias.WAIT_NEWS)

    def test_timeframe_conflict(self):
        base = dict(regime=MarketRegime.TRENDING, trend=Bias.BULLISH)
        conflicted = _state(mtf=MultiTimeframeBias(Bias.BEARISH, 0.5), trend_strength=70, **base)
        self.assertEqual(self.bias(conflicted, _probs(50, 50, 10)), PredictionBias.WAIT_CONFLICT)

        rejected = _state(mtf=MultiTimeframeBias(Bias.BEARISH, 0.5), trend_strength=70, rejection=Bias.BEARISH, **base)
        self.assertEqual(self.bias(rejected, _probs(50, 50, 10)), PredictionBias.BEARISH)

        strong_htf = _state(mtf=MultiTimeframeBias(Bias.BEARISH, 0.9), trend_strength=40, **base)
        self.assertEqual(self.bias(strong_htf, _probs(50, 50, 10)), PredictionBias.BEARISH)

        strong_ltf = _state(mtf=MultiTimeframeBias(Bias.BEARISH, 0.3), trend_strength=90, **base)
        self.assertEqual(self.bias(strong_ltf, _probs(50, 50, 10)), PredictionBias.BULLISH)

    def test_falls_back_to_htf(self):
        state = _state(regime=MarketRegime.TRENDING, mtf=MultiTimeframeBias(Bias.BULLISH, 0.6))
        self.assertEqual(self.bias(state, _probs(50, 50, 10)), PredictionBias.BULLISH)


class TestTargetAndInvalidation(unittest.TestCase):
    def setUp(self):
        self.compressor = PredictionCompressor()

    def test_weighted_cluster_of_pools(self):
        pools = (
            LiquidityPool(102.0, "BUY_SIDE", 10, 5),
            LiquidityPool(104.0, "BUY_SIDE", 12, 3),
            LiquidityPool(98.0, "SELL_SIDE", 11, 4),
        )
        target = self.compressor.select_target(_state(liquidity_pools=pools), PredictionBias.BULLISH, [LONG], _probs(70, 20, 10))
        self.assertAlmostEqual(target, 103.0)

    def test_liquidity_run_then_setup(self):
        run = LiquidityRun(probability=70.0, target=105.0, kind="BUY_SIDE")
        state = _state()
        self.assertEqual(self.compressor.select_target(state, PredictionBias.BULLISH, [LONG], _probs(70, 20, 10, run)), 105.0)
        self.assertEqual(self.compressor.select_target(state, PredictionBias.BULLISH, [LONG], _probs(70, 20, 10)), 103.0)
        self.assertIsNone(self.compressor.select_target(state, PredictionBias.WAIT_RANGE, [LONG], _probs(40, 40, 20)))

    def test_invalidation(self):
        swings = (SwingPoint(150, T0, 97.0, "LOW"), SwingPoint(170, T0, 98.5, "LOW"), SwingPoint(180, T0, 101.0, "HIGH"))
        state = _state(swings=swings)
        self.assertEqual(PredictionCompressor.define_invalidation(state, PredictionBias.BULLISH, [LONG]), 99.0)
        self.assertEqual(PredictionCompressor.define_invalidation(state, PredictionBias.BULLISH, []), 98.5)
        self.assertEqual(PredictionCompressor.define_invalidation(state, PredictionBias.BEARISH, []), 101.0)
        self.assertIsNone(PredictionCompressor.define_invalidation(state, PredictionBias.NEUTRAL, [LONG]))


class TestConfidence(unittest.TestCase):
    def setUp(self):
        self.compressor = PredictionCompressor()

    def test_non_directional(self):
        self.assertEqual(self.compressor.calculate_confidence(_state(), PredictionBias.WAIT_NEWS, _probs(50, 50, 10)), 30)
        self.assertEqual(self.compressor.calculate_confidence(_state(), PredictionBias.NEUTRAL, _probs(10, 10, 80)), 30)

    def test_neutral_htf(self):
        # 35 from probability, +12 neutral HTF, -10 for a stalled market
        self.assertEqual(self.compressor.calculate_confidence(_state(), PredictionBias.BULLISH, _probs(70, 20, 10)), 37)

    def test_aligned_timeframes(self):
        state = _state(trend=Bias.BULLISH, mtf=MultiTimeframeBias(Bias.BULLISH, 0.7))
        self.assertEqual(self.compressor.calculate_confidence(state, PredictionBias.BULLISH, _probs(70, 20, 10)), 65)

    def test_trap_penalty_and_clamp(self):
        state = _state(trap_zones=TrapZones(warning="Near bull trap"))
        self.assertEqual(self.compressor.calculate_confidence(state, PredictionBias.BULLISH, _probs(70, 20, 10)), 12)
        self.assertEqual(self.compressor.calculate_confidence(state, PredictionBias.BULLISH, _probs(10, 10, 10)), 0)


class TestSuppression(unittest.TestCase):
    def test_weak_probabilities(self):
        suppression = PredictionCompressor.should_show_prediction(_state(), _probs(40, 30, 30))
        self.assertEqual(suppression.reasons, ("Weak probabilities (max 40 < 70 for NO_OBLIGATION)",))

    def test_clean_prediction_is_shown(self):
        self.assertIsNone(PredictionCompressor.should_show_prediction(_state(), _probs(70, 20, 10)))

    def test_obligated_state_lowers_the_bar(self):
        obligations = ObligationSet((Obligation("BUY_SIDE_LIQUIDITY", 102.0, 70.0, "Buy stops"),), "OBLIGATED")
        self.assertIsNone(PredictionCompressor.should_show_prediction(_state(obligations=obligations), _probs(50, 30, 20)))

    def test_opposing_magnet(self):
        obligations = ObligationSet((Obligation("SELL_SIDE_LIQUIDITY", 98.0, 90.0, "Sell stops"),), "OBLIGATED")
        state = _state(trend=Bias.BULLISH, obligations=obligations)
        suppression = PredictionCompressor.should_show_prediction(state, _probs(80, 10, 10))
        self.assertEqual(
            suppression.reasons,
            ("Opposing magnet SELL_SIDE_LIQUIDITY (urgency 90) against predicted BULLISH",),
        )

    def test_collects_every_reason(self):
        state = _state(
            trend=Bias.BULLISH,
            mtf=MultiTimeframeBias(Bias.BEARISH, 0.6),
            news_shock=NewsShock("CPI", "HIGH"),
            trap_zones=TrapZones(warning="Near bull trap"),
        )
        suppression = PredictionCompressor.should_show_prediction(state, _probs(50, 20, 30))
        self.assertEqual(len(suppression.reasons), 4)
        self.assertEqual(suppression.reasons[0], "High-impact news shock active (CPI)")
        self.assertIn("HTF/LTF conflict (BEARISH vs BULLISH)", suppression.reasons[1])
        self.assertEqual(suppression.reasons[2], "Inside trap zone: Near bull trap")
        self.assertIn("max 50 < 70", suppression.reasons[3])
        self.assertIn("; ", suppression.reason)


class TestCompress(unittest.TestCase):
    def setUp(self):
        self.compressor = PredictionCompressor()

    def test_directional_prediction(self):
        with self.assertLogs("edge_pipeline.compressor", level="INFO"):
            result = self.compressor.compress(_state(trend=Bias.BULLISH), [LONG], _probs(70, 20, 10))
        prediction = result.prediction
        self.assertIsNone(result.suppression)
        self.assertEqual(prediction.bias, PredictionBias.BULLISH)
        self.assertEqual(prediction.target, 103.0)
        self.assertEqual(prediction.invalidation, 99.0)
        self.assertEqual(prediction.confidence, 37)
        self.assertEqual(prediction.edge_score, 2.5)
        self.assertEqual(prediction.edge_label, "NO EDGE")
        self.assertEqual(prediction.reason, "technical alignment.")
        self.assertEqual(prediction.created_at, T0)
        self.assertEqual(prediction.expires_at, T0 + timedelta(hours=8))
        self.assertEqual(
            prediction.validity_conditions,
            (
                "Price stays above 99",
                "HTF NEUTRAL structure remains intact",
                "No high-impact news releases within 15 mins",
            ),
        )
        self.assertEqual(prediction.snapshot["trend"], "BULLISH")
        self.assertEqual(prediction.horizons.session, "Buy-side expansion toward targets")

    def test_neutral_prediction_is_suppressed_but_built(self):
        with self.assertLogs("edge_pipeline.compressor", level="WARNING") as logs:
            result = self.compressor.compress(_state(), [], _probs(20, 20, 40))
        self.assertEqual(result.prediction.bias, PredictionBias.WAIT_RANGE)
        self.assertEqual(result.prediction.confidence, 30)
        self.assertIsNone(result.prediction.target)
        self.assertEqual(result.prediction.edge_score, 0.0)
        self.assertEqual(result.prediction.horizons.immediate, "Sideways")
        self.assertIsNotNone(result.suppression)
        self.assertIn("suppressed", logs.output[0])

    def test_consolidation_reason(self):
        result = self.compressor.compress(_state(), [], _probs(10, 10, 80))
        self.assertEqual(result.prediction.bias, PredictionBias.NEUTRAL)
        self.assertEqual(result.prediction.reason, "Market in consolidation. Awaiting directional catalyst.")


if __name__ == "__main__":
    unittest.main()
