"""Each scoring rule in isolation: exact points and audit-trail reason."""

import unittest
from datetime import date, datetime, timezone

from edge_pipeline.market_state import (
    CorrelationCluster,
    FractalPattern,
    MarketCycle,
    MarketState,
    MultiTimeframeBias,
    NewsShock,
    Sentiment,
    SMTDivergence,
)
from edge_pipeline.performance import AlphaLeak, AlphaSnapshot, EngineAlpha
from edge_pipeline.scoring import rules
from edge_pipeline.scoring.rules import ScoringContext
from edge_pipeline.signals.icebergs import Iceberg
from edge_pipeline.signals.indicators import MomentumSnapshot
from edge_pipeline.signals.obligations import Obligation, ObligationSet
from edge_pipeline.signals.order_book import DepthAnalysis, DepthWall
from edge_pipeline.signals.order_flow import Absorption, OrderFlowSnapshot, VolumeAnalysis
from edge_pipeline.signals.session import SessionContext
from edge_pipeline.signals.volume_profile import NakedPOC, VolumeProfile
from edge_pipeline.types import Bias, MarketRegime, Setup

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
LONG = Setup(Bias.BULLISH, 100.0, 99.0, (103.0,), strategy_id="ORDER_BLOCK_RETEST")
SHORT = Setup(Bias.BEARISH, 100.0, 101.0, (97.0,), strategy_id="ORDER_BLOCK_RETEST")


def _ctx(setup=LONG, **kwargs):
    fields = dict(symbol="BTCUSDT", timeframe="1h", timestamp=T0, price=100.0, candle_count=200, last_candle=None)
    fields.update(kwargs)
    return ScoringContext.build(setup, MarketState(**fields))


class RuleTestCase(unittest.TestCase):
    def assertFires(self, contribution, points, reason):
        self.assertIsNotNone(contribution)
        self.assertEqual(contribution.points, points)
        self.assertEqual(contribution.reason, reason)


class TestGoldenConfluence(RuleTestCase):
    def test_all_four_agree(self):
        ctx = _ctx(
            mtf=MultiTimeframeBias(Bias.BULLISH, 0.8),
            trend=Bias.BULLISH,
            sentiment=Sentiment("BULLISH"),
            volume_analysis=VolumeAnalysis(is_institutional=True),
        )
        self.assertFires(rules.golden_confluence(ctx), 50, "GOLDEN CONFLUENCE (HTF + Trend + Sentiment + Volume)")

    def test_missing_volume(self):
        ctx = _ctx(mtf=MultiTimeframeBias(Bias.BULLISH, 0.8), trend=Bias.BULLISH, sentiment=Sentiment("BULLISH"))
        self.assertIsNone(rules.golden_confluence(ctx))


class TestSMTDivergence(RuleTestCase):
    def test_confirmation(self):
        smt = SMTDivergence("BULLISH_SMT", "ETHUSDT")
        ctx = _ctx(smt_divergences=(smt,), smt_divergence=smt)
        self.assertFires(rules.smt_divergence(ctx), 35, "SMT Divergence Confirmation (BULLISH_SMT with ETHUSDT)")

    def test_conflict(self):
        smt = SMTDivergence("BEARISH_SMT")
        ctx = _ctx(smt_divergences=(smt,), smt_divergence=smt)
        self.assertFires(rules.smt_divergence(ctx), -20, "SMT Divergence Conflict (BEARISH_SMT)")

    def test_detected_and_premium(self):
        found = (SMTDivergence("BULLISH_SMT"),)
        self.assertFires(rules.smt_divergence(_ctx(smt_divergences=found)), 15, "Inter-market divergence (SMT) DETECTED")
        self.assertFires(
            rules.smt_divergence(_ctx(smt_divergences=found, smt_confluence=85.0)),
            25, "Inter-market divergence (SMT) PREMIUM",
        )

    def test_none(self):
        self.assertIsNone(rules.smt_divergence(_ctx()))


class TestKillzone(RuleTestCase):
    def _session(self, hour):
        return SessionContext("LONDON", "LONDON_OPEN", False, hour, 0)

    def test_power_hour_day_trader(self):
        self.assertFires(rules.killzone(_ctx(session=self._session(8))), 20, "Killzone alignment (LONDON_OPEN - POWER HOUR)")

    def test_scalper_weight(self):
        ctx = _ctx(timeframe="5m", session=self._session(10))
        self.assertFires(rules.killzone(ctx), 13, "Killzone alignment (LONDON_OPEN) [CRITICAL]")

    def test_swing_weight(self):
        ctx = _ctx(timeframe="4h", session=self._session(13))
        self.assertFires(rules.killzone(ctx), 12, "Killzone alignment (LONDON_OPEN - POWER HOUR)")

    def test_outside_killzone(self):
        self.assertIsNone(rules.killzone(_ctx(session=SessionContext("ASIAN", None, False, 3, 0))))


class TestMagnetAlignment(RuleTestCase):
    def _magnet(self, urgency):
        return ObligationSet((Obligation("BUY_SIDE_LIQUIDITY", 102.0, urgency, "equal highs"),), "OBLIGATED")

    def test_with_magnet(self):
        self.assertFires(
            rules.magnet_alignment(_ctx(obligations=self._magnet(85))),
            15, "Magnet Acceleration (BUY_SIDE_LIQUIDITY)",
        )

    def test_against_magnet(self):
        self.assertFires(
            rules.magnet_alignment(_ctx(SHORT, obligations=self._magnet(85))),
            -40, "CRITICAL: Trading against Major Magnet (BUY_SIDE_LIQUIDITY)",
        )

    def test_weak_magnet(self):
        self.assertIsNone(rules.magnet_alignment(_ctx(obligations=self._magnet(75))))


class TestOrderFlowRules(RuleTestCase):
    def test_supporting_iceberg(self):
        whale = (Iceberg(100.2, "BUY_ICEBERG", 5000.0, 3, 2.5),)
        self.assertFires(rules.iceberg(_ctx(icebergs=whale)), 25, "WHALE DETECTED: Iceberg Buy Wall at 100.2")
        self.assertFires(
            rules.iceberg(_ctx(SHORT, icebergs=whale)),
            -30, "CRITICAL: Trading into Opposing Iceberg at 100.2",
        )

    def test_distant_iceberg(self):
        self.assertIsNone(rules.iceberg(_ctx(icebergs=(Iceberg(101.0, "BUY_ICEBERG", 5000.0, 3, 2.5),))))

    def test_absorption(self):
        flow = OrderFlowSnapshot(absorption=Absorption(Bias.BULLISH))
        self.assertFires(
            rules.absorption(_ctx(order_flow=flow)),
            20, "Institutional Absorption (Delta Divergence) Supporting Long",
        )
        self.assertIsNone(rules.absorption(_ctx(SHORT, order_flow=flow)))

    def test_cvd(self):
        flow = OrderFlowSnapshot(cvd_bias=Bias.BULLISH)
        self.assertFires(rules.cvd(_ctx(order_flow=flow)), 10, "Cumulative Volume Delta (CVD) Aligned")
        self.assertFires(rules.cvd(_ctx(SHORT, order_flow=flow)), -5, "Retail Order Flow (CVD) Conflict")

    def test_opposing_cvd_with_absorption_is_silent(self):
        flow = OrderFlowSnapshot(cvd_bias=Bias.BULLISH, absorption=Absorption(Bias.BEARISH))
        self.assertIsNone(rules.cvd(_ctx(SHORT, order_flow=flow)))


class TestProfileAndBookRules(RuleTestCase):
    def test_poc_test(self):
        near = VolumeProfile(poc=100.1, value_area_high=101.0, value_area_low=99.0, total_volume=1000.0)
        far = VolumeProfile(poc=101.0, value_area_high=102.0, value_area_low=99.0, total_volume=1000.0)
        self.assertFires(rules.poc_test(_ctx(volume_profile=near)), 5, "Price testing High-Volume POC")
        self.assertIsNone(rules.poc_test(_ctx(volume_profile=far)))

    def test_naked_poc(self):
        profile = VolumeProfile(
            poc=105.0, value_area_high=106.0, value_area_low=104.0, total_volume=1000.0,
            naked_pocs=(NakedPOC(98.0, date(2023, 12, 31)),),
        )
        self.assertFires(rules.naked_poc(_ctx(volume_profile=profile)), 5, "Institutional nPOC magnet detected")
        self.assertIsNone(rules.naked_poc(_ctx()))

    def test_dom_wall(self):
        near = DepthAnalysis(walls=(DepthWall(100.05, 50.0, "BUY", 5.0),))
        far = DepthAnalysis(walls=(DepthWall(100.5, 50.0, "BUY", 5.0),))
        self.assertFires(rules.dom_wall(_ctx(depth=near)), 5, "Entry supported by DOM Liquidity Wall")
        self.assertIsNone(rules.dom_wall(_ctx(depth=far)))

    def test_depth_pressure(self):
        bid_heavy = DepthAnalysis(imbalance=0.25, pressure=Bias.BULLISH)
        self.assertFires(rules.depth_pressure(_ctx(depth=bid_heavy)), 7.5, "Institutional depth pressure alignment")
        self.assertIsNone(rules.depth_pressure(_ctx(SHORT, depth=bid_heavy)))


class TestHazardRules(RuleTestCase):
    def test_news_shock(self):
        self.assertFires(rules.news_shock(_ctx(news_shock=NewsShock("CPI", "HIGH"))), -35, "High-impact news hazard (CPI)")
        self.assertIsNone(rules.news_shock(_ctx(news_shock=NewsShock("PMI", "MEDIUM"))))

    def test_correlation_cluster(self):
        extreme = CorrelationCluster(("BTC", "ETH"), "EXTREME", "Risk-on")
        high = CorrelationCluster(("BTC", "ETH"), "HIGH", "Risk-on")
        moderate = CorrelationCluster(("BTC", "ETH"), "MODERATE", "Risk-on")
        self.assertFires(
            rules.correlation_cluster(_ctx(correlation_cluster=extreme)),
            -25, "EXTREME Correlation Risk (Cluster: Risk-on)",
        )
        self.assertFires(
            rules.correlation_cluster(_ctx(correlation_cluster=high)),
            -10, "High Correlation Risk (Cluster: Risk-on)",
        )
        self.assertIsNone(rules.correlation_cluster(_ctx(correlation_cluster=moderate)))


class TestMarketCycle(RuleTestCase):
    def test_manipulation(self):
        cycle = MarketCycle("MANIPULATION", Bias.BULLISH)
        self.assertFires(
            rules.market_cycle(_ctx(market_cycle=cycle)),
            -40, "CRITICAL: High probability Judas Swing (Manipulation phase)",
        )
        self.assertFires(rules.market_cycle(_ctx(SHORT, market_cycle=cycle)), 25, "Fading manipulation move (Pro-Trend)")

    def test_expansion(self):
        cycle = MarketCycle("EXPANSION", Bias.BULLISH)
        self.assertFires(rules.market_cycle(_ctx(market_cycle=cycle)), 20, "Institutional EXPANSION alignment")
        self.assertFires(
            rules.market_cycle(_ctx(SHORT, market_cycle=cycle)),
            -30, "Counter-institutional EXPANSION conflict",
        )

    def test_accumulation_and_unknown(self):
        self.assertFires(
            rules.market_cycle(_ctx(market_cycle=MarketCycle("ACCUMULATION", Bias.BULLISH))),
            -10, "Early entry hazard (Accumulation phase)",
        )
        self.assertIsNone(rules.market_cycle(_ctx(market_cycle=MarketCycle("UNKNOWN"))))


class TestAlphaTracker(RuleTestCase):
    def _alpha(self, status, *leaks):
        return AlphaSnapshot({"ORDER_BLOCK_RETEST": EngineAlpha(0.7, 40, 1.2, status)}, tuple(leaks))

    def test_engine_status(self):
        self.assertFires(rules.alpha_tracker(_ctx(alpha=self._alpha("INSTITUTIONAL"))), 15, "Institutional Alpha Alignment")
        self.assertFires(rules.alpha_tracker(_ctx(alpha=self._alpha("HIGH_ALPHA"))), 8, "Institutional Alpha Alignment")
        self.assertFires(rules.alpha_tracker(_ctx(alpha=self._alpha("DEGRADING"))), -12, "Institutional Alpha Headwind")
        self.assertIsNone(rules.alpha_tracker(_ctx(alpha=self._alpha("STABLE"))))

    def test_leaks(self):
        high = AlphaLeak("ORDER_BLOCK_RETEST", "HIGH", "false alpha in chop")
        medium = AlphaLeak("ORDER_BLOCK_RETEST", "MEDIUM", "fading")
        self.assertFires(
            rules.alpha_tracker(_ctx(alpha=self._alpha("INSTITUTIONAL", high))),
            -5, "Institutional Alpha Headwind",
        )
        self.assertFires(
            rules.alpha_tracker(_ctx(alpha=self._alpha("INSTITUTIONAL", medium))),
            5, "Institutional Alpha Alignment",
        )

    def test_inactive_engines_are_ignored(self):
        alpha = AlphaSnapshot(
            {"SMT": EngineAlpha(0.3, 40, -1.0, "DEGRADING")},
            (AlphaLeak("SMT", "HIGH", "false alpha"),),
        )
        self.assertIsNone(rules.alpha_tracker(_ctx(alpha=alpha)))

    def test_context_engines_count(self):
        alpha = AlphaSnapshot({
            "ORDER_BLOCK_RETEST": EngineAlpha(0.6, 40, 0.5, "HIGH_ALPHA"),
            "SENTIMENT": EngineAlpha(0.4, 40, -0.5, "DEGRADING"),
        })
        ctx = _ctx(alpha=alpha, sentiment=Sentiment("NEUTRAL"))
        self.assertFires(rules.alpha_tracker(ctx), -4, "Institutional Alpha Headwind")


class TestMomentumCluster(RuleTestCase):
    OVERSOLD = MomentumSnapshot(rsi=35.0, stochastic_signal="OVERSOLD")

    def test_ranging_amplifies_oscillators(self):
        ctx = _ctx(momentum=self.OVERSOLD, regime=MarketRegime.RANGING)
        self.assertFires(rules.momentum_cluster(ctx), 23, "Momentum Cluster Alignment (PREMIUM)")

    def test_trending_damps_oscillators(self):
        ctx = _ctx(momentum=self.OVERSOLD, regime=MarketRegime.TRENDING)
        self.assertFires(rules.momentum_cluster(ctx), 8, "Momentum Cluster Alignment (STRONG)")

    def test_overextension_penalty(self):
        ctx = _ctx(momentum=MomentumSnapshot(rsi=80.0), regime=MarketRegime.TRENDING)
        self.assertFires(rules.momentum_cluster(ctx), -7, "Momentum Divergence/Overextension (7pt penalty)")

    def test_macd_turn(self):
        turning = MomentumSnapshot(macd_histogram=-1.0, previous_macd_histogram=-2.0)
        self.assertFires(
            rules.momentum_cluster(_ctx(momentum=turning, regime=MarketRegime.TRENDING)),
            5, "Momentum Cluster Alignment (STRONG)",
        )
        self.assertIsNone(rules.momentum_cluster(_ctx(SHORT, momentum=turning)))


class TestCrowdAndPatternRules(RuleTestCase):
    def test_sentiment(self):
        crowd = Sentiment("BULLISH", 0.8)
        self.assertFires(rules.sentiment(_ctx(sentiment=crowd)), 5, "Crowd Sentiment Alignment (BULLISH)")
        self.assertFires(rules.sentiment(_ctx(SHORT, sentiment=crowd)), -10, "Crowd Sentiment Conflict (BULLISH)")
        self.assertIsNone(rules.sentiment(_ctx(SHORT, sentiment=Sentiment("BULLISH", 0.5))))

    def test_fractal_pattern(self):
        fractal = FractalPattern(Bias.BULLISH, 0.75)
        self.assertFires(rules.fractal_pattern(_ctx(fractal=fractal)), 15.0, "Fractal Confirmation (75%)")
        self.assertFires(rules.fractal_pattern(_ctx(SHORT, fractal=fractal)), -15, "Fractal Pattern Conflict")
        self.assertIsNone(rules.fractal_pattern(_ctx(SHORT, fractal=FractalPattern(Bias.BULLISH, 0.5))))

    def test_directional_confidence(self):
        def setup(confidence):
            return Setup(Bias.BULLISH, 100.0, 99.0, (103.0,), directional_confidence=confidence)

        self.assertFires(rules.directional_confidence(_ctx(setup(0.8))), 15, "High Directional Confidence (80%)")
        self.assertFires(rules.directional_confidence(_ctx(setup(0.4))), -20, "Low Directional Conviction (40%)")
        self.assertIsNone(rules.directional_confidence(_ctx(setup(0.6))))
        self.assertIsNone(rules.directional_confidence(_ctx()))


if __name__ == "__main__":
    unittest.main()
