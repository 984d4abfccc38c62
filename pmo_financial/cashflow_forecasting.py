"""
Cash Flow Forecasting Module
Monthly and weekly projections, shortfalls, runway, cash position,
scenario planning and seasonal trends
"""

from __future__ import annotations

import calendar
import logging
import math
from dataclasses import replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .dates import add_months, month_end, month_start, parse_datetime, utcnow
from .errors import ValidationError, wraps_errors

if TYPE_CHECKING:
    from .cashflow import CashFlowService
    from .models import CashFlow

LOGGER = logging.getLogger(__name__)

Period = Tuple[str, datetime, datetime]


def week_start(value: datetime) -> datetime:
    """Monday 00:00 of the week containing ``value``."""

    monday = value - timedelta(days=value.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def week_label(value: datetime) -> str:
    iso_year, iso_week, _ = value.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def monthly_periods(now: datetime, count: int) -> List[Period]:
    periods = []
    for offset in range(count):
        start = month_start(add_months(now, offset))
        periods.append((start.strftime("%Y-%m"), start, month_end(start)))
    return periods


def weekly_periods(now: datetime, count: int) -> List[Period]:
    periods = []
    for offset in range(count):
        start = week_start(now + timedelta(weeks=offset))
        end = start + timedelta(days=7) - timedelta(microseconds=1)
        periods.append((week_label(start), start, end))
    return periods


def aggregate_flows(flows: Iterable["CashFlow"], start: datetime, end: datetime) -> Tuple[float, float]:
    """Sum inflows and outflows dated within ``start``..``end``; cancelled flows are ignored."""

    inflows = 0.0
    outflows = 0.0
    for flow in flows:
        if flow.status == "cancelled":
            continue
        if start <= flow.effective_date <= end:
            if flow.type == "inflow":
                inflows += flow.amount
            else:
                outflows += flow.amount
    return inflows, outflows


def project_balances(
    flows: Sequence["CashFlow"], periods: Sequence[Period], opening_balance: float = 0.0, label: str = "month"
) -> List[Dict[str, Any]]:
    """Running balance per period; each closing balance opens the next period."""

    balance = opening_balance
    projection = []
    for key, start, end in periods:
        inflows, outflows = aggregate_flows(flows, start, end)
        net = inflows - outflows
        closing = balance + net
        projection.append(
            {
                label: key,
                "opening_balance": round(balance, 2),
                "total_inflows": round(inflows, 2),
                "total_outflows": round(outflows, 2),
                "net_cash_flow": round(net, 2),
                "closing_balance": round(closing, 2),
            }
        )
        balance = closing
    return projection


def runway_recommendation(months_remaining: float) -> str:
    if math.isinf(months_remaining):
        return "Cash flow is positive. Continue monitoring to maintain healthy financial position."
    if months_remaining < 3:
        return (
            f"Critical: Only {months_remaining:.1f} months of runway remaining. "
            "Immediate action required to reduce burn rate or secure additional funding."
        )
    if months_remaining < 6:
        return (
            f"Warning: {months_remaining:.1f} months of runway remaining. "
            "Begin planning to reduce expenses or increase revenue."
        )
    if months_remaining < 12:
        return (
            f"Caution: {months_remaining:.1f} months of runway remaining. "
            "Monitor closely and consider strategies to extend runway."
        )
    return (
        f"Healthy: {months_remaining:.1f} months of runway remaining. "
        "Continue current financial management practices."
    )


def calculate_runway_from_flows(
    flows: Iterable["CashFlow"], current_balance: float, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Runway at the average monthly burn of completed flows

    Args:
        flows: Flows from the trailing three months; only completed flows
            with an actual date count
        current_balance: Cash on hand
        now: Reference time, defaults to the current time

    Returns:
        Dict with months_remaining (``inf`` when cash flow is not negative),
        depletion_date, average_monthly_burn and recommendation
    """
    now = now or utcnow()
    inflows = 0.0
    outflows = 0.0
    for flow in flows:
        if flow.status != "completed" or flow.actual_date is None:
            continue
        if flow.type == "inflow":
            inflows += flow.amount
        else:
            outflows += flow.amount

    burn = (outflows - inflows) / 3
    if burn <= 0:
        months_remaining = math.inf
        depletion_date = None
    else:
        months_remaining = current_balance / burn
        depletion_date = add_months(now, math.floor(months_remaining)) if months_remaining > 0 else None

    return {
        "months_remaining": round(months_remaining, 2),
        "depletion_date": depletion_date,
        "average_monthly_burn": round(burn, 2),
        "recommendation": runway_recommendation(months_remaining),
    }


def assess_forecast_confidence(completed: int, forecasted: int, days_ahead: float) -> str:
    """Confidence from the share of already completed flows, lowered for long horizons."""

    total = completed + forecasted
    if total == 0:
        confidence = "low"
    else:
        ratio = completed / total
        if ratio > 0.7:
            confidence = "high"
        elif ratio > 0.3:
            confidence = "medium"
        else:
            confidence = "low"

    if days_ahead > 180:
        return "low"
    if days_ahead > 90 and confidence == "high":
        return "medium"
    return confidence


def shortfall_recommendations(shortfall: float, total_inflows: float, total_outflows: float) -> List[str]:
    recommendations = [
        f"Delay ${min(shortfall, total_outflows * 0.3):.2f} in non-critical payments",
        f"Accelerate invoicing by ${min(shortfall, total_inflows * 0.2):.2f}",
    ]
    if shortfall > total_outflows * 0.5:
        recommendations.append(f"Consider short-term financing of ${shortfall:.2f}")
    recommendations.append(f"Review and reduce discretionary spending by ${total_outflows * 0.15:.2f}")
    if total_outflows > 0:
        recommendations.append("Negotiate extended payment terms with vendors")
    return recommendations


def shift_flows(
    flows: Iterable["CashFlow"],
    inflow_days: int,
    outflow_days: int,
    inflow_factor: float = 1.0,
    outflow_factor: float = 1.0,
) -> List["CashFlow"]:
    """Copy flows with their dates moved by a number of days and amounts scaled per type."""

    shifted = []
    for flow in flows:
        if flow.type == "inflow":
            days, factor = inflow_days, inflow_factor
        else:
            days, factor = outflow_days, outflow_factor
        shifted.append(
            replace(
                flow,
                forecast_date=flow.forecast_date + timedelta(days=days),
                actual_date=flow.actual_date + timedelta(days=days) if flow.actual_date else None,
                amount=flow.amount * factor,
            )
        )
    return shifted


def seasonal_trends(flows: Iterable["CashFlow"]) -> List[Dict[str, Any]]:
    """Average completed inflows and outflows per calendar month (1-12)."""

    monthly: Dict[int, Dict[str, List[float]]] = {month: {"inflows": [], "outflows": []} for month in range(1, 13)}
    for flow in flows:
        if flow.status != "completed" or flow.actual_date is None:
            continue
        bucket = "inflows" if flow.type == "inflow" else "outflows"
        monthly[flow.actual_date.month][bucket].append(flow.amount)

    trends = []
    for month in range(1, 13):
        inflows = monthly[month]["inflows"]
        outflows = monthly[month]["outflows"]
        average_in = sum(inflows) / len(inflows) if inflows else 0.0
        average_out = sum(outflows) / len(outflows) if outflows else 0.0
        trends.append(
            {
                "month": month,
                "average_inflows": round(average_in, 2),
                "average_outflows": round(average_out, 2),
                "net_cash_flow": round(average_in - average_out, 2),
            }
        )
    return trends


def interpret_seasonal_trends(trends: Sequence[Dict[str, Any]]) -> str:
    lines = ["Seasonal analysis of cash flow patterns:", ""]

    ranked = sorted(trends, key=lambda trend: trend["net_cash_flow"], reverse=True)
    best, worst = ranked[0], ranked[-1]
    lines.append(f"- Best month: {calendar.month_name[best['month']]} (avg net flow: ${best['net_cash_flow']:.2f})")
    lines.append(f"- Worst month: {calendar.month_name[worst['month']]} (avg net flow: ${worst['net_cash_flow']:.2f})")
    lines.append("")

    quarters = [sum(trend["net_cash_flow"] for trend in trends[q * 3:q * 3 + 3]) / 3 for q in range(4)]
    lines.append("Quarterly patterns:")
    for index, average in enumerate(quarters, start=1):
        lines.append(f"- Q{index}: ${average:.2f} avg net flow")
    lines.append("")

    lines.append("Key insights:")
    strongest, weakest = max(quarters), min(quarters)
    if strongest > 0 and weakest < 0:
        lines.append(
            f"- Strongest performance in Q{quarters.index(strongest) + 1}, weakest in Q{quarters.index(weakest) + 1}"
        )
    q1, q2, q3, q4 = quarters
    if q4 < q1 * 0.7:
        lines.append("- Higher outflows in Q4 may indicate year-end bonuses or budget spending")
    if q3 < (q2 + q4) / 2:
        lines.append("- Lower activity in Q3 may indicate summer slowdown")

    total_in = sum(trend["average_inflows"] for trend in trends)
    total_out = sum(trend["average_outflows"] for trend in trends)
    if total_in > total_out:
        lines.append("- Overall positive cash flow trend across the year")
    elif total_out > total_in:
        lines.append("- Overall negative cash flow trend - monitor burn rate closely")
    else:
        lines.append("- Balanced cash flow throughout the year")
    return "\n".join(lines) + "\n"


class CashFlowForecaster:
    """Forecasts over the flows held by a :class:`CashFlowService`."""

    def __init__(self, cashflows: "CashFlowService") -> None:
        self.cashflows = cashflows

    async def _flows_between(self, program_id: str, start: datetime, end: datetime) -> List["CashFlow"]:
        return await self.cashflows.list_cash_flows(program_id=program_id, start_date=start, end_date=end)

    async def _monthly(
        self, program_id: str, months_ahead: int, opening_balance: float, adjust: Optional[Callable[[List["CashFlow"]], List["CashFlow"]]] = None
    ) -> List[Dict[str, Any]]:
        now = utcnow()
        flows = await self._flows_between(program_id, now, add_months(now, months_ahead))
        if adjust is not None:
            flows = adjust(flows)
        return project_balances(flows, monthly_periods(now, months_ahead), opening_balance)

    @wraps_errors("forecast monthly cash flow")
    async def forecast_monthly_cash_flow(
        self, program_id: str, months_ahead: int = 12, opening_balance: float = 0.0
    ) -> List[Dict[str, Any]]:
        if months_ahead < 1:
            raise ValidationError("months_ahead must be at least 1")
        return await self._monthly(program_id, months_ahead, opening_balance)

    @wraps_errors("forecast weekly cash flow")
    async def forecast_weekly_cash_flow(
        self, program_id: str, weeks_ahead: int = 12, opening_balance: float = 0.0
    ) -> List[Dict[str, Any]]:
        if weeks_ahead < 1:
            raise ValidationError("weeks_ahead must be at least 1")
        now = utcnow()
        flows = await self._flows_between(program_id, now, now + timedelta(weeks=weeks_ahead))
        return project_balances(flows, weekly_periods(now, weeks_ahead), opening_balance, label="week")

    @wraps_errors("identify cash shortfalls")
    async def identify_cash_shortfalls(self, program_id: str, months_ahead: int = 12) -> List[Dict[str, Any]]:
        """Months whose projected closing balance is negative, with mitigation suggestions."""

        shortfalls = []
        for forecast in await self.forecast_monthly_cash_flow(program_id, months_ahead):
            if forecast["closing_balance"] >= 0:
                continue
            shortfall = abs(forecast["closing_balance"])
            shortfalls.append(
                {
                    "month": forecast["month"],
                    "shortfall": shortfall,
                    "closing_balance": forecast["closing_balance"],
                    "recommendations": shortfall_recommendations(
                        shortfall, forecast["total_inflows"], forecast["total_outflows"]
                    ),
                }
            )
        if shortfalls:
            LOGGER.warning("Program %s has %d projected cash shortfall month(s)", program_id, len(shortfalls))
        return shortfalls

    @wraps_errors("calculate runway")
    async def calculate_runway(self, program_id: str, current_balance: float) -> Dict[str, Any]:
        now = utcnow()
        flows = await self._flows_between(program_id, add_months(now, -3), now)
        return calculate_runway_from_flows(flows, current_balance, now)

    @wraps_errors("forecast cash position")
    async def forecast_cash_position(self, program_id: str, target_date: Any, current_balance: float) -> Dict[str, Any]:
        """
        Projected balance on ``target_date``

        Raises:
            OperationError: if the target date is not in the future
        """
        now = utcnow()
        target = parse_datetime(target_date)
        if target <= now:
            raise ValidationError("Target date must be in the future")

        inflows = 0.0
        outflows = 0.0
        completed = 0
        forecasted = 0
        for flow in await self._flows_between(program_id, now, target):
            if flow.status == "cancelled":
                continue
            if flow.type == "inflow":
                inflows += flow.amount
            else:
                outflows += flow.amount
            if flow.status == "completed":
                completed += 1
            else:
                forecasted += 1

        days_ahead = math.floor((target - now).total_seconds() / 86400)
        assumptions = []
        if forecasted:
            assumptions.append("All forecasted cash flows will occur as scheduled")
        if inflows > 0:
            assumptions.append("All invoices will be paid on time")
        if outflows > 0:
            assumptions.append("No unexpected expenses will occur")
        assumptions.append("No changes to current business operations")
        assumptions.append("Economic conditions remain stable")
        if days_ahead > 90:
            assumptions.append("Long-term forecast - higher uncertainty due to time horizon")

        return {
            "forecast_balance": round(current_balance + inflows - outflows, 2),
            "confidence": assess_forecast_confidence(completed, forecasted, days_ahead),
            "inflows": round(inflows, 2),
            "outflows": round(outflows, 2),
            "assumptions": assumptions,
        }

    @wraps_errors("generate cash flow scenarios")
    async def generate_cash_flow_scenarios(self, program_id: str, months_ahead: int = 12) -> Dict[str, List[Dict[str, Any]]]:
        """Baseline projection plus optimistic and pessimistic timing and amount shifts."""

        return {
            "optimistic": await self._monthly(
                program_id,
                months_ahead,
                0.0,
                lambda flows: shift_flows(flows, -5, 5, inflow_factor=1.1, outflow_factor=1.1),
            ),
            "baseline": await self._monthly(program_id, months_ahead, 0.0),
            "pessimistic": await self._monthly(
                program_id,
                months_ahead,
                0.0,
                lambda flows: shift_flows(flows, 10, -5, outflow_factor=1.15),
            ),
        }

    @wraps_errors("identify seasonal trends")
    async def identify_seasonal_trends(self, program_id: str) -> Dict[str, Any]:
        now = utcnow()
        trends = seasonal_trends(await self._flows_between(program_id, add_months(now, -12), now))
        return {"trends": trends, "interpretation": interpret_seasonal_trends(trends)}
