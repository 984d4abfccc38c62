"""
EVM Forecasting Module
Estimate at completion, completion dates, scenarios and required performance
"""

from __future__ import annotations

import logging
import math
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Dict, Optional

from .dates import add_months, parse_datetime, utcnow
from .errors import ValidationError, wraps_errors
from .evm_trending import population_stddev

if TYPE_CHECKING:
    from .evm_snapshots import SnapshotService
    from .models import EVMSnapshot

LOGGER = logging.getLogger(__name__)

FORECAST_METHODS = ("cpi", "cpi-spi", "bottom-up")


def forecast_eac_using_cpi(bac: float, ac: float, cpi: float) -> float:
    """EAC assuming current cost efficiency continues."""

    if bac <= 0:
        return 0.0
    if cpi <= 0:
        return round(bac + abs(ac), 2)
    return round(bac / cpi, 2)


def forecast_eac_using_cpi_and_spi(bac: float, ac: float, ev: float, cpi: float, spi: float) -> float:
    """EAC when schedule pressure also drives cost: AC + (BAC - EV) / (CPI x SPI)."""

    if bac <= 0:
        return 0.0
    factor = cpi * spi
    if factor <= 0:
        return round(ac + (bac - ev) + abs(bac - ac), 2)
    return round(ac + (bac - ev) / factor, 2)


def forecast_etc(eac: float, ac: float) -> float:
    return max(0.0, round(eac - ac, 2))


def confidence_from_cpi_history(cpi_values: list) -> str:
    if len(cpi_values) < 2:
        return "low"
    stddev = population_stddev(cpi_values)
    if stddev < 0.05:
        return "high"
    if stddev < 0.15:
        return "medium"
    return "low"


class EVMForecaster:
    """Forecasts built from a program's latest EVM snapshot."""

    def __init__(self, snapshots: "SnapshotService") -> None:
        self.snapshots = snapshots

    async def _latest(self, program_id: str) -> "EVMSnapshot":
        snapshot = await self.snapshots.get_latest_snapshot(program_id)
        if snapshot is None:
            raise LookupError(f"No EVM snapshots found for program {program_id}")
        return snapshot

    @wraps_errors("forecast completion date")
    async def forecast_completion_date(self, program_id: str, planned_end_date: Any) -> Dict[str, Any]:
        """
        Forecast when the program finishes at its current schedule efficiency

        Returns:
            Dict with forecast_date, variance (days late, negative = early) and on_time
        """
        snapshot = await self._latest(program_id)
        planned_end = parse_datetime(planned_end_date)
        today = utcnow()

        if snapshot.spi <= 0:
            return {
                "forecast_date": add_months(planned_end, 12),
                "variance": 365,
                "on_time": False,
            }

        remaining_days = max(0.0, (planned_end - today).total_seconds() / 86400)
        forecast_date = today + timedelta(days=remaining_days / snapshot.spi)
        variance = round((forecast_date - planned_end).total_seconds() / 86400)
        return {
            "forecast_date": forecast_date,
            "variance": variance,
            "on_time": variance <= 7,
        }

    async def assess_forecast_confidence(self, program_id: str) -> str:
        """Confidence from CPI stability over the last three months; any failure yields ``low``."""

        try:
            history = await self.snapshots.get_snapshot_history(program_id, 3)
        except Exception as exc:
            LOGGER.warning("Could not assess forecast confidence for %s: %s", program_id, exc)
            return "low"
        return confidence_from_cpi_history([snapshot.cpi for snapshot in history])

    @wraps_errors("forecast budget at completion")
    async def forecast_budget_at_completion(self, program_id: str, method: str = "cpi") -> Dict[str, Any]:
        if method not in FORECAST_METHODS:
            raise ValidationError(f"Unknown forecasting method: {method}")
        snapshot = await self._latest(program_id)

        if method == "cpi":
            eac = forecast_eac_using_cpi(snapshot.bac, snapshot.ac, snapshot.cpi)
        elif method == "cpi-spi":
            eac = forecast_eac_using_cpi_and_spi(snapshot.bac, snapshot.ac, snapshot.ev, snapshot.cpi, snapshot.spi)
        else:
            eac = snapshot.ac + (snapshot.bac - snapshot.ev)

        etc = forecast_etc(eac, snapshot.ac)
        return {
            "eac": round(eac, 2),
            "etc": round(etc, 2),
            "vac": round(snapshot.bac - eac, 2),
            "method": method,
            "confidence": await self.assess_forecast_confidence(program_id),
        }

    @wraps_errors("generate forecast scenarios")
    async def generate_forecast_scenarios(self, program_id: str, elapsed_days: float = 180) -> Dict[str, Any]:
        """
        Optimistic, baseline and pessimistic EAC and completion dates

        Args:
            program_id: Program identifier
            elapsed_days: Days the program has been running; used with percent
                complete to estimate total duration

        Returns:
            Dict keyed by scenario, each with eac and completion_date. The
            completion date is None when progress or SPI is zero.
        """
        snapshot = await self._latest(program_id)
        bac, ac, ev, cpi, spi = snapshot.bac, snapshot.ac, snapshot.ev, snapshot.cpi, snapshot.spi

        baseline_eac = forecast_eac_using_cpi(bac, ac, cpi)
        optimistic_eac = forecast_eac_using_cpi(bac, ac, cpi * 1.1)
        pessimistic_eac = forecast_eac_using_cpi_and_spi(bac, ac, ev, cpi * 0.9, spi * 0.9)

        today = utcnow()
        percent_complete = ev / bac if bac > 0 else 0.0
        remaining_days: Optional[float] = None
        if percent_complete > 0:
            remaining_days = elapsed_days / percent_complete - elapsed_days

        def completion(spi_value: float) -> Any:
            if remaining_days is None or spi_value <= 0:
                return None
            return today + timedelta(days=remaining_days / spi_value)

        return {
            "optimistic": {"eac": optimistic_eac, "completion_date": completion(spi * 1.1)},
            "baseline": {"eac": baseline_eac, "completion_date": completion(spi)},
            "pessimistic": {"eac": pessimistic_eac, "completion_date": completion(spi * 0.9)},
        }

    @wraps_errors("calculate required performance")
    async def calculate_required_performance(self, program_id: str, target_eac: Optional[float] = None) -> Dict[str, Any]:
        """TCPI needed to finish on BAC and on ``target_eac`` (defaults to BAC)."""

        snapshot = await self._latest(program_id)
        remaining_work = snapshot.bac - snapshot.ev

        remaining_bac = snapshot.bac - snapshot.ac
        tcpi_bac = remaining_work / remaining_bac if remaining_bac > 0 else math.inf

        remaining_target = (target_eac or snapshot.bac) - snapshot.ac
        tcpi_eac = remaining_work / remaining_target if remaining_target > 0 else math.inf

        feasible = not math.isinf(tcpi_eac) and tcpi_eac <= 1.1

        if math.isinf(tcpi_eac):
            required = "Target is impossible - budget already exhausted"
        elif tcpi_eac <= 1.0:
            required = f"No improvement needed - {(1.0 - tcpi_eac) * 100:.1f}% margin available"
        else:
            required = f"{(tcpi_eac - 1.0) * 100:.1f}% improvement in cost efficiency needed"
            if tcpi_eac > 1.2:
                required += " (very challenging - consider scope/budget adjustment)"
            elif tcpi_eac > 1.1:
                required += " (challenging but achievable with focused effort)"
            else:
                required += " (achievable with improved efficiency)"

        return {
            "tcpi_bac": 0.0 if math.isinf(tcpi_bac) else round(tcpi_bac, 4),
            "tcpi_eac": 0.0 if math.isinf(tcpi_eac) else round(tcpi_eac, 4),
            "current_cpi": snapshot.cpi,
            "feasible": feasible,
            "required_improvement": required,
        }
