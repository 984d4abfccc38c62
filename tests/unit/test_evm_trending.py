"""
Trend statistics, anomaly detection and baseline comparison over EVM snapshots
"""

from datetime import timedelta

import pytest

from pmo_financial.dates import utcnow
from pmo_financial.errors import OperationError
from pmo_financial.evm_trending import (
    calculate_linear_regression,
    calculate_moving_average,
    classify_trend,
    extract_health_score,
    population_stddev,
)


async def _series(services, cpis, program_id="PRG-001"):
    """Record one snapshot per CPI value, oldest first, one week apart."""
    snapshots = []
    for offset, cpi in enumerate(cpis):
        snapshots.append(
            await services.snapshots.record_snapshot(
                program_id,
                pv=100.0,
                ev=100.0 * cpi,
                ac=100.0,
                bac=1000.0,
                snapshot_date=utcnow() - timedelta(weeks=len(cpis) - offset),
            )
        )
    return snapshots


class TestStatistics:
    def test_perfect_linear_fit(self):
        result = calculate_linear_regression([(1, 2), (2, 4), (3, 6)])
        assert result == {"slope": 2.0, "intercept": 0.0, "r2": 1.0}

    def test_regression_accepts_xy_dicts(self):
        result = calculate_linear_regression([{"x": 0, "y": 1}, {"x": 1, "y": 1}])
        assert result["slope"] == 0.0
        assert result["intercept"] == 1.0

    def test_degenerate_regressions(self):
        assert calculate_linear_regression([]) == {"slope": 0.0, "intercept": 0.0, "r2": 0.0}
        assert calculate_linear_regression([(5, 3)]) == {"slope": 0.0, "intercept": 3.0, "r2": 0.0}

    def test_trailing_moving_average(self):
        assert calculate_moving_average([1, 2, 3, 4, 5], 3) == [1, 1.5, 2, 3, 4]
        assert calculate_moving_average([], 3) == []

    @pytest.mark.parametrize("slope,expected", [(0.05, "improving"), (-0.05, "declining"), (0.005, "stable")])
    def test_classify_trend(self, slope, expected):
        assert classify_trend(slope) == expected

    def test_population_stddev(self):
        assert population_stddev([2, 4, 4, 4, 5, 5, 7, 9]) == 2.0

    def test_health_score_from_notes(self):
        assert extract_health_score("Health: warning (score: 65)") == 65
        assert extract_health_score("") == 50


class TestTrendAnalyzer:
    @pytest.mark.asyncio
    async def test_improving_cpi(self, services):
        await _series(services, [0.8, 0.9, 1.0, 1.1])

        analysis = await services.trends.analyze_cpi_trend("PRG-001")
        assert analysis["trend"] == "improving"
        assert analysis["slope"] == pytest.approx(0.1)
        assert analysis["current_cpi"] == 1.1
        assert analysis["average_cpi"] == pytest.approx(0.95)
        assert analysis["r2"] == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_empty_history_is_stable(self, services):
        analysis = await services.trends.analyze_spi_trend("PRG-404")
        assert analysis["trend"] == "stable"
        assert analysis["current_spi"] == 0.0

    @pytest.mark.asyncio
    async def test_anomalies_need_three_samples(self, services):
        await _series(services, [1.0, 3.0])
        assert await services.trends.detect_anomalies("PRG-001", "cpi") == []

    @pytest.mark.asyncio
    async def test_outlier_flagged(self, services):
        snapshots = await _series(services, [1.0, 1.0, 1.0, 1.0, 1.0, 2.0])

        anomalies = await services.trends.detect_anomalies("PRG-001", "cpi", threshold=2.0)
        assert len(anomalies) == 1
        assert anomalies[0]["snapshot_id"] == snapshots[-1].snapshot_id
        assert anomalies[0]["deviation"] == "high"
        assert anomalies[0]["z_score"] > 2

    @pytest.mark.asyncio
    async def test_unsupported_metric(self, services):
        with pytest.raises(OperationError, match="Unsupported metric"):
            await services.trends.detect_anomalies("PRG-001", "eac")

    @pytest.mark.asyncio
    async def test_declining_performance_is_high_risk(self, services):
        await _series(services, [1.0, 0.9, 0.8, 0.7])

        trend = await services.trends.analyze_performance_trend("PRG-001")
        assert trend["overall_trend"] == "declining"
        assert trend["risk_level"] == "high"
        assert any(item.startswith("Cost performance is declining") for item in trend["recommendations"])
        assert 0 <= trend["health_trend"]["forecast_3_months"] <= 100

    @pytest.mark.asyncio
    async def test_stable_performance_recommendation(self, services):
        await _series(services, [1.0, 1.0, 1.0])

        trend = await services.trends.analyze_performance_trend("PRG-001")
        assert trend["overall_trend"] == "stable"
        assert trend["risk_level"] == "low"
        assert trend["recommendations"] == ["Performance is stable. Maintain current tracking and control processes."]


class TestBaselineComparison:
    @pytest.mark.asyncio
    async def test_compare_latest_to_baseline(self, services):
        baseline, _, current = await _series(services, [0.8, 0.9, 1.0])

        comparison = await services.trends.compare_to_baseline("PRG-001", baseline.snapshot_id)
        assert comparison["current_snapshot_id"] == current.snapshot_id
        assert comparison["cpi_change"] == pytest.approx(0.2)
        assert comparison["summary"].startswith("Cost performance has improved significantly.")

    @pytest.mark.asyncio
    async def test_missing_baseline(self, services):
        await _series(services, [1.0])
        with pytest.raises(OperationError, match="Baseline snapshot SNAP-999 not found"):
            await services.trends.compare_to_baseline("PRG-001", "SNAP-999")
