"""
Earned Value Management Calculations
Core EVM metrics, the program health index and the PV/EV/AC/BAC base values
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import DEFAULT_EVM_POLICY, EVMPolicy
from .dates import parse_optional_datetime, utcnow
from .errors import wraps_errors
from .models import BUDGET_SCHEMA, DELIVERABLE_SCHEMA, Budget, Deliverable
from .row_store import RowStore
from .schema import decode_rows

LOGGER = logging.getLogger(__name__)


def _fallback_eac(policy: EVMPolicy, bac: float, ac: float, ev: float, cv: float) -> float:
    if policy.eac_fallback == "bac":
        return bac
    if policy.eac_fallback == "ac_plus_remaining":
        return ac + (bac - ev)
    return bac + abs(cv)


def calculate_evm_metrics(
    pv: float,
    ev: float,
    ac: float,
    bac: float,
    policy: EVMPolicy = DEFAULT_EVM_POLICY,
) -> Dict[str, float]:
    """
    Calculate the standard EVM indicators

    Args:
        pv: Planned value
        ev: Earned value
        ac: Actual cost
        bac: Budget at completion
        policy: Fallbacks used when CPI or the remaining budget is not positive

    Returns:
        Dict with cv, sv, cv_percent, sv_percent, cpi, spi, eac, etc, vac, tcpi.
        Indices are rounded to 4 decimals, money values to 2.
    """
    cv = ev - ac
    sv = ev - pv

    cpi = ev / ac if ac > 0 else 0.0
    spi = ev / pv if pv > 0 else 0.0

    cv_percent = cv / ac * 100 if ac > 0 else 0.0
    sv_percent = sv / pv * 100 if pv > 0 else 0.0

    eac = bac / cpi if cpi > 0 else _fallback_eac(policy, bac, ac, ev, cv)
    etc = eac - ac
    vac = bac - eac

    remaining_budget = bac - ac
    tcpi = (bac - ev) / remaining_budget if remaining_budget > 0 else policy.tcpi_exhausted_value

    return {
        "cv": round(cv, 2),
        "sv": round(sv, 2),
        "cv_percent": round(cv_percent, 2),
        "sv_percent": round(sv_percent, 2),
        "cpi": round(cpi, 4),
        "spi": round(spi, 4),
        "eac": round(eac, 2),
        "etc": round(etc, 2),
        "vac": round(vac, 2),
        "tcpi": round(tcpi, 4),
    }


def calculate_health_index(metrics: Dict[str, float]) -> Dict[str, Any]:
    """
    Score program health from 0-100 based on CPI, SPI, TCPI and VAC

    Args:
        metrics: Output of ``calculate_evm_metrics`` (or a snapshot's values)

    Returns:
        Dict with score, status (healthy/warning/critical) and indicators,
        the first indicator being the overall assessment.
    """
    cpi = metrics["cpi"]
    spi = metrics["spi"]
    tcpi = metrics["tcpi"]
    vac = metrics["vac"]
    cv_percent = metrics["cv_percent"]

    score = 100
    indicators: List[str] = []

    if cpi < 0.85:
        score -= 30
        indicators.append(f"Critical cost overrun (CPI: {cpi:.2f})")
    elif cpi < 0.95:
        score -= 15
        indicators.append(f"Moderate cost overrun (CPI: {cpi:.2f})")
    elif cpi >= 1.05:
        indicators.append(f"Under budget (CPI: {cpi:.2f})")

    if spi < 0.85:
        score -= 30
        indicators.append(f"Critically behind schedule (SPI: {spi:.2f})")
    elif spi < 0.95:
        score -= 15
        indicators.append(f"Moderately behind schedule (SPI: {spi:.2f})")
    elif spi >= 1.05:
        indicators.append(f"Ahead of schedule (SPI: {spi:.2f})")

    if tcpi > 1.15:
        score -= 20
        indicators.append(f"Difficult target performance required (TCPI: {tcpi:.2f})")
    elif tcpi > 1.05:
        score -= 10
        indicators.append(f"Improved performance needed (TCPI: {tcpi:.2f})")

    if vac < 0:
        if abs(cv_percent) > 10:
            score -= 20
            indicators.append(f"Significant budget overrun expected (VAC: {vac:.0f})")
        elif abs(cv_percent) > 5:
            score -= 10
            indicators.append(f"Moderate budget overrun expected (VAC: {vac:.0f})")
    elif vac > 0:
        indicators.append(f"Under budget at completion (VAC: {vac:.0f})")

    score = max(0, min(100, score))

    if score >= 70 and cpi >= 0.95 and spi >= 0.95:
        status = "healthy"
        indicators.insert(0, "Project is performing well")
    elif score >= 50 or (cpi >= 0.85 and spi >= 0.85):
        status = "warning"
        indicators.insert(0, "Project requires attention")
    else:
        status = "critical"
        indicators.insert(0, "Project requires immediate action")

    return {"score": round(score), "status": status, "indicators": indicators}


def planned_fraction(period_start: Optional[datetime], period_end: Optional[datetime], as_of: datetime) -> float:
    """Share of a budget period elapsed at ``as_of`` (linear planned spend), clamped to 0..1."""

    if period_start is None or period_end is None:
        return 0.0
    total = (period_end - period_start).total_seconds()
    if total <= 0:
        return 1.0 if as_of >= period_end else 0.0
    elapsed = (as_of - period_start).total_seconds()
    return max(0.0, min(1.0, elapsed / total))


class EVMCalculator:
    """Derives PV, EV, AC and BAC for a program from the budget and deliverable sheets."""

    def __init__(self, store: RowStore, policy: EVMPolicy = DEFAULT_EVM_POLICY) -> None:
        self.store = store
        self.policy = policy

    async def _program_budgets(self, program_id: str) -> List[Budget]:
        rows = await self.store.read_data_rows(BUDGET_SCHEMA)
        budgets = decode_rows(BUDGET_SCHEMA, rows, Budget, LOGGER)
        return [budget for budget in budgets if budget.program_id == program_id]

    @wraps_errors("calculate AC")
    async def calculate_ac(self, program_id: str, as_of_date: Any = None) -> float:
        """Actual cost: total spent across the program's budgets."""

        budgets = await self._program_budgets(program_id)
        return round(sum(budget.spent for budget in budgets), 2)

    @wraps_errors("calculate BAC")
    async def calculate_bac(self, program_id: str) -> float:
        """Budget at completion: total allocated across the program's budgets."""

        budgets = await self._program_budgets(program_id)
        return round(sum(budget.allocated for budget in budgets), 2)

    @wraps_errors("calculate PV")
    async def calculate_pv(self, program_id: str, as_of_date: Any = None) -> float:
        """Planned value: each budget's allocation spread linearly over its period."""

        as_of = parse_optional_datetime(as_of_date) or utcnow()
        budgets = await self._program_budgets(program_id)
        planned = sum(
            budget.allocated * planned_fraction(budget.period_start, budget.period_end, as_of)
            for budget in budgets
        )
        return round(planned, 2)

    @wraps_errors("calculate EV")
    async def calculate_ev(self, program_id: str, as_of_date: Any = None) -> float:
        """Earned value: budgeted cost of each deliverable weighted by its completion."""

        rows = await self.store.read_data_rows(DELIVERABLE_SCHEMA)
        deliverables = decode_rows(DELIVERABLE_SCHEMA, rows, Deliverable, LOGGER)
        earned = sum(
            item.budgeted_cost * max(0.0, min(100.0, item.percent_complete)) / 100
            for item in deliverables
            if item.program_id == program_id
        )
        return round(earned, 2)

    @wraps_errors("perform EVM calculation")
    async def perform_evm_calculation(self, program_id: str, as_of_date: Any = None) -> Dict[str, Any]:
        pv = await self.calculate_pv(program_id, as_of_date)
        ev = await self.calculate_ev(program_id, as_of_date)
        ac = await self.calculate_ac(program_id, as_of_date)
        bac = await self.calculate_bac(program_id)
        metrics = calculate_evm_metrics(pv, ev, ac, bac, self.policy)
        LOGGER.info("EVM calculated for %s: CPI=%s SPI=%s", program_id, metrics["cpi"], metrics["spi"])
        return {"pv": pv, "ev": ev, "ac": ac, "bac": bac, "metrics": metrics}
