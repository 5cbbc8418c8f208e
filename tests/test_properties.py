"""
Cross-cutting invariants of the pipeline outputs.

Run with: python -m pytest tests/test_properties.py -v
"""

import math

import pytest

from edge_pipeline.backtest.analytics import max_drawdown, profit_factor
from edge_pipeline.backtest.data import SyntheticCandleProvider
from edge_pipeline.execution.algorithms import IcebergSlicer, TWAPExecutor
from edge_pipeline.pipeline import ForecastPipeline


@pytest.fixture(scope="module")
def results():
    pipeline = ForecastPipeline()
    out = []
    for seed, symbol in [(1, "BTCUSDT"), (2, "EURUSD"), (3, "ETHUSDT"), (5, "SPY"), (8, "GBPUSD")]:
        candles = SyntheticCandleProvider(seed=seed).generate(260, "1h", symbol)
        out.append(pipeline.evaluate(symbol, "1h", candles))
    return out


class TestScenarioInvariants:
    def test_probabilities_sum_to_one(self, results):
        for result in results:
            total = sum(s.probability for s in result.scenarios.ranked)
            assert total == pytest.approx(1.0, abs=1e-6)

    def test_directional_cap(self, results):
        for result in results:
            for scenario in result.scenarios.ranked:
                if scenario.direction.value != "RANGE":
                    assert scenario.probability <= 0.75 + 1e-9

    def test_primary_is_most_likely(self, results):
        for result in results:
            assert result.scenarios.primary is result.scenarios.ranked[0]
            assert result.scenarios.primary.probability >= result.scenarios.secondary.probability - 0.01


class TestEdgeScoreInvariants:
    def test_bounded_and_finite(self, results):
        for result in results:
            for edge in result.scores:
                assert 0.0 <= edge.score <= 10.0
                assert math.isfinite(edge.points)

    def test_no_phantom_reasons(self, results):
        for result in results:
            for edge in result.scores:
                reasons = {c.reason for c in edge.contributions}
                assert set(edge.positives) <= reasons
                assert set(edge.risks) <= reasons


class TestPredictionInvariants:
    def test_numbers_are_finite(self, results):
        for result in results:
            prediction = result.compression.prediction
            assert 0 <= prediction.confidence <= 100
            for value in (prediction.target, prediction.invalidation):
                assert value is None or math.isfinite(value)

    def test_suppression_always_has_a_reason(self, results):
        for result in results:
            if result.compression.is_suppressed:
                assert result.compression.suppression.reasons
                assert all(result.compression.suppression.reasons)


@pytest.mark.parametrize(
    "total, visible, variance, seed",
    [
        (2500.0, 250.0, 0.2, 1),
        (1.0, 0.1, 0.2, 2),
        (12.345, 1.0, 0.5, 3),
        (99.99, 10.0, 0.0, 4),
        (0.3, 1.0, 0.2, 5),
    ],
)
def test_iceberg_slices_sum_to_total(total, visible, variance, seed):
    slices = IcebergSlicer(seed=seed).generate_slices(total, visible, variance)
    assert sum(slices) == pytest.approx(total, abs=1e-4)
    assert all(s > 0 for s in slices)
    for s in slices[:-1]:
        assert visible * (1 - variance) - 1e-4 <= s <= visible * (1 + variance) + 1e-4
    assert slices[-1] <= visible * (1 + variance) + 1e-4


@pytest.mark.parametrize("total, slices", [(10_000.0, 10), (7.5, 3), (1.0, 1)])
def test_twap_schedule_preserves_total(total, slices):
    schedule = TWAPExecutor(seed=3).generate_schedule(total, horizon_minutes=60, slices=slices)
    assert len(schedule.trade_sizes) == slices
    assert schedule.trade_sizes.sum() == pytest.approx(total)
    assert schedule.time_points[0] == 0.0


def test_reference_statistics():
    assert max_drawdown([10000, 11000, 9000, 9500]) == pytest.approx(18.18, abs=0.01)
    assert profit_factor([200, -100, 50, -150]) == pytest.approx(1.0)
