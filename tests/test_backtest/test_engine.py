import unittest
from datetime import datetime, timedelta, timezone

from edge_pipeline.backtest.data import SyntheticCandleProvider
from edge_pipeline.backtest.engine import (
    BacktestEngine,
    BacktestOverrides,
    SignalEntry,
    attribute_factors,
)
from edge_pipeline.types import Bias, Candle, Setup, Trade, TradeOutcome

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
LONG = Setup(Bias.BULLISH, 100.0, 99.0, (102.0,), strategy_id="LIQUIDITY_SWEEP")


def _bar(i, high=100.5, low=99.5):
    return Candle(T0 + timedelta(hours=i), 100.0, high, low, 100.0, 1000.0)


def _history(count=120, spikes=()):
    return [_bar(i, high=102.5) if i in spikes else _bar(i) for i in range(count)]


def _entry(index, setup=LONG, **factors):
    return SignalEntry(index=index, setup=setup, points=80.0, factors=factors, engines=("LIQUIDITY_SWEEP",))


class TestSimulateTrade(unittest.TestCase):
    def setUp(self):
        self.engine = BacktestEngine()

    def test_target(self):
        trade = self.engine.simulate_trade(LONG, [_bar(1), _bar(2, high=102.1)])
        self.assertEqual(trade.outcome, TradeOutcome.TP)
        self.assertAlmostEqual(trade.pnl, 200.0)
        self.assertAlmostEqual(trade.pnl_percent, 0.02)
        self.assertEqual(trade.time, T0 + timedelta(hours=2))

    def test_stop_is_checked_first(self):
        trade = self.engine.simulate_trade(LONG, [_bar(1, high=102.5, low=98.5)])
        self.assertEqual(trade.outcome, TradeOutcome.SL)
        self.assertEqual(trade.pnl, -100.0)

    def test_short_target(self):
        short = Setup(Bias.BEARISH, 100.0, 101.0, (98.0,))
        trade = self.engine.simulate_trade(short, [_bar(1, low=97.9)])
        self.assertEqual(trade.outcome, TradeOutcome.TP)
        self.assertTrue(trade.is_win)

    def test_unresolved_trade_is_discarded(self):
        self.assertIsNone(self.engine.simulate_trade(LONG, _history(60)))
        # Target reached only after the holding window
        self.assertIsNone(self.engine.simulate_trade(LONG, _history(60, spikes={50})))

    def test_multipliers_move_levels(self):
        overrides = BacktestOverrides(sl_multiplier=2.0, tp_multiplier=1.5)
        trade = self.engine.simulate_trade(LONG, [_bar(1, high=103.5, low=98.5)], overrides)
        self.assertEqual((trade.stop_loss, trade.take_profit), (98.0, 103.0))
        self.assertEqual(trade.outcome, TradeOutcome.TP)
        self.assertAlmostEqual(trade.pnl, 150.0)


class TestReplay(unittest.TestCase):
    def setUp(self):
        self.engine = BacktestEngine()

    def test_cooldown_and_advance(self):
        candles = _history(120, spikes={52, 60})
        table = {50: _entry(50, fvg=True), 56: _entry(56), 58: _entry(58, fvg=True, sweep=True)}
        result = self.engine.replay("TEST", "1h", candles, table)

        # 56 is still inside the cooldown of the trade closed at 52
        self.assertEqual([t.entry_time for t in result.trades], [T0 + timedelta(hours=50), T0 + timedelta(hours=58)])
        self.assertEqual(result.equity_curve, (10000.0, 10200.0, 10400.0))
        self.assertEqual(result.stats.win_rate, 100.0)
        self.assertEqual(result.stats.total_return, 4.0)
        self.assertEqual(result.trades[1].factors, {"fvg": True, "sweep": True})
        self.assertEqual(result.engine_alpha["LIQUIDITY_SWEEP"].sample_size, 2)
        self.assertEqual(dict(result.strategy_weights), {"LIQUIDITY_SWEEP": 1.0})

        by_factor = {a.factor: a for a in result.attribution}
        self.assertEqual((by_factor["FVG"].impact, by_factor["FVG"].win_rate), (2, 100))
        self.assertEqual(by_factor["SMT"].impact, 0)

    def test_strategy_filter(self):
        candles = _history(120, spikes={52})
        result = self.engine.replay("TEST", "1h", candles, {50: _entry(50)}, BacktestOverrides(strategy_filter="ORDER_BLOCK"))
        self.assertEqual(result.trades, ())
        result = self.engine.replay("TEST", "1h", candles, {50: _entry(50)}, BacktestOverrides(strategy_filter="SWEEP"))
        self.assertEqual(len(result.trades), 1)

    def test_attribution_rounds_half_up(self):
        def trade(outcome):
            return Trade(100, 99, 102, Bias.BULLISH, outcome, 1.0, 0.0, T0, factors={"news": True})

        stats = attribute_factors([trade(TradeOutcome.TP), trade(TradeOutcome.SL)])
        self.assertEqual([a.factor for a in stats], ["FVG", "SMT", "SWEEP", "NEWS", "OTE"])
        self.assertEqual(stats[3].win_rate, 50)


class TestRunBacktest(unittest.TestCase):
    def test_short_history_warns(self):
        engine = BacktestEngine()
        with self.assertLogs("edge_pipeline.backtest.engine", level="WARNING"):
            result = engine.run_backtest("TEST", "1h", candles=_history(50))
        self.assertEqual(result.stats.total_trades, 0)
        self.assertEqual(result.equity_curve, (10000.0,))

    def test_requires_provider_or_candles(self):
        with self.assertRaises(ValueError):
            BacktestEngine().run_backtest("TEST", "1h", candle_count=200)

    def test_synthetic_run_is_deterministic(self):
        engine = BacktestEngine(provider=SyntheticCandleProvider(seed=11))
        first = engine.run_backtest("BTCUSDT", "1h", candle_count=200)
        second = engine.run_backtest("BTCUSDT", "1h", candle_count=200)
        self.assertEqual(first.trades, second.trades)
        self.assertEqual(first.equity_curve, second.equity_curve)
        self.assertEqual(len(first.equity_curve), len(first.trades) + 1)
        for trade in first.trades:
            self.assertIn(trade.outcome, (TradeOutcome.TP, TradeOutcome.SL))


if __name__ == "__main__":
    unittest.main()
