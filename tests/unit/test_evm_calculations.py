"""
Earned value metrics, program health index and PV/EV/AC/BAC derivation
"""

import pytest

from pmo_financial.config import EVMPolicy
from pmo_financial.evm_calculations import (
    EVMCalculator,
    calculate_evm_metrics,
    calculate_health_index,
    planned_fraction,
)


class TestEVMMetrics:
    """Standard EVM indicators"""

    def test_on_plan_program(self):
        metrics = calculate_evm_metrics(pv=100000, ev=100000, ac=100000, bac=200000)

        assert metrics["cv"] == 0
        assert metrics["sv"] == 0
        assert metrics["cpi"] == 1.0
        assert metrics["spi"] == 1.0
        assert metrics["eac"] == 200000
        assert metrics["etc"] == 100000
        assert metrics["vac"] == 0
        assert metrics["tcpi"] == 1.0

    def test_under_budget_and_ahead(self):
        metrics = calculate_evm_metrics(pv=100000, ev=110000, ac=95000, bac=200000)

        assert metrics["cv"] == 15000
        assert metrics["sv"] == 10000
        assert metrics["cpi"] == pytest.approx(1.1579, abs=1e-4)
        assert metrics["spi"] == pytest.approx(1.1)
        assert metrics["eac"] == pytest.approx(172727.27, abs=0.01)
        assert metrics["vac"] == pytest.approx(27272.73, abs=0.01)
        assert metrics["tcpi"] == pytest.approx(0.8571, abs=1e-4)

    def test_percentages(self):
        metrics = calculate_evm_metrics(pv=200, ev=150, ac=300, bac=1000)
        assert metrics["cv_percent"] == -50.0
        assert metrics["sv_percent"] == -25.0

    def test_zero_denominators_give_zero_indices(self):
        metrics = calculate_evm_metrics(pv=0, ev=0, ac=0, bac=0)
        assert metrics["cpi"] == 0
        assert metrics["spi"] == 0
        assert metrics["cv_percent"] == 0
        assert metrics["sv_percent"] == 0


class TestEVMPolicy:
    """Configurable fallbacks for degenerate denominators"""

    @pytest.mark.parametrize(
        "fallback,expected",
        [("bac_plus_cv", 1100.0), ("bac", 1000.0), ("ac_plus_remaining", 900.0)],
    )
    def test_eac_fallback_when_cpi_is_zero(self, fallback, expected):
        metrics = calculate_evm_metrics(pv=100, ev=100, ac=0, bac=1000, policy=EVMPolicy(eac_fallback=fallback))
        assert metrics["eac"] == expected

    def test_tcpi_when_budget_exhausted(self):
        metrics = calculate_evm_metrics(pv=800, ev=500, ac=1200, bac=1000)
        assert metrics["tcpi"] == 0.0

        policy = EVMPolicy(tcpi_exhausted_value=1.5)
        assert calculate_evm_metrics(pv=800, ev=500, ac=1200, bac=1000, policy=policy)["tcpi"] == 1.5

    def test_unknown_fallback_rejected(self):
        with pytest.raises(ValueError, match="Unknown EAC fallback"):
            EVMPolicy(eac_fallback="guess")

    def test_policy_from_environment(self, monkeypatch):
        monkeypatch.setenv("EVM_EAC_FALLBACK", "BAC")
        monkeypatch.setenv("EVM_TCPI_EXHAUSTED_VALUE", "2")
        policy = EVMPolicy.from_environment()
        assert policy.eac_fallback == "bac"
        assert policy.tcpi_exhausted_value == 2.0


class TestHealthIndex:
    def test_healthy_program(self):
        health = calculate_health_index(calculate_evm_metrics(100000, 100000, 100000, 200000))
        assert health["status"] == "healthy"
        assert health["score"] == 100
        assert health["indicators"][0] == "Project is performing well"

    def test_critical_program(self):
        metrics = calculate_evm_metrics(pv=100000, ev=80000, ac=100000, bac=200000)
        assert metrics["cpi"] == 0.8
        assert metrics["spi"] == 0.8

        health = calculate_health_index(metrics)
        assert health["status"] == "critical"
        assert health["score"] <= 40
        assert health["indicators"][0] == "Project requires immediate action"
        assert any("Critical cost overrun" in item for item in health["indicators"])

    def test_moderate_overrun_is_warning(self):
        metrics = {"cpi": 0.9, "spi": 1.0, "tcpi": 1.0, "vac": 0, "cv_percent": -3}
        health = calculate_health_index(metrics)
        assert health["score"] == 85
        assert health["status"] == "warning"

    def test_score_never_negative(self):
        metrics = {"cpi": 0.1, "spi": 0.1, "tcpi": 5.0, "vac": -1000, "cv_percent": -90}
        assert calculate_health_index(metrics)["score"] == 0


class TestPlannedFraction:
    def test_linear_over_period(self):
        from datetime import datetime, timezone

        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        end = datetime(2024, 1, 11, tzinfo=timezone.utc)
        assert planned_fraction(start, end, datetime(2024, 1, 6, tzinfo=timezone.utc)) == 0.5
        assert planned_fraction(start, end, datetime(2023, 12, 1, tzinfo=timezone.utc)) == 0.0
        assert planned_fraction(start, end, datetime(2025, 1, 1, tzinfo=timezone.utc)) == 1.0
        assert planned_fraction(None, end, start) == 0.0


class TestEVMCalculator:
    """Base values derived from the Budgets and Deliverables sheets"""

    @pytest.fixture
    def seeded(self, store, seed_budget, seed_deliverable):
        seed_budget("BUD-001", allocated=100000, spent=40000,
                    period_start="2024-01-01T00:00:00+00:00", period_end="2024-01-11T00:00:00+00:00")
        seed_budget("BUD-002", program_id="PRG-002", allocated=999999, spent=999999)
        seed_deliverable("D-001", 60000, 50)
        seed_deliverable("D-002", 40000, 150)
        seed_deliverable("D-003", 80000, 100, program_id="PRG-002")
        return EVMCalculator(store)

    @pytest.mark.asyncio
    async def test_base_values(self, seeded):
        assert await seeded.calculate_ac("PRG-001") == 40000
        assert await seeded.calculate_bac("PRG-001") == 100000
        assert await seeded.calculate_pv("PRG-001", "2024-01-06T00:00:00Z") == 50000
        # completion above 100% is clamped
        assert await seeded.calculate_ev("PRG-001") == 70000

    @pytest.mark.asyncio
    async def test_perform_evm_calculation(self, seeded):
        result = await seeded.perform_evm_calculation("PRG-001", "2024-01-06T00:00:00Z")

        assert (result["pv"], result["ev"], result["ac"], result["bac"]) == (50000, 70000, 40000, 100000)
        assert result["metrics"]["cpi"] == 1.75
        assert result["metrics"]["spi"] == 1.4

    @pytest.mark.asyncio
    async def test_program_without_rows(self, store):
        result = await EVMCalculator(store).perform_evm_calculation("PRG-404")
        assert result["bac"] == 0
        assert result["metrics"]["cpi"] == 0
