"""
Budget Management Module
Budget lifecycle (create, allocate, commit, spend, close), variance and burn rate
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from .dates import parse_datetime, utcnow
from .errors import ValidationError, wraps_errors
from .events import EventBus
from .models import BUDGET_SCHEMA, Budget
from .row_store import RowStore
from .schema import coerce_input, decode_rows

LOGGER = logging.getLogger(__name__)

REQUIRED_CREATE_FIELDS = (
    "program_id",
    "name",
    "category",
    "allocated",
    "fiscal_year",
    "period_start",
    "period_end",
    "requested_by",
)
CREATE_FIELDS = REQUIRED_CREATE_FIELDS + ("project_id", "description", "approved_by", "approved_date", "currency", "notes")
UPDATABLE_FIELDS = (
    "program_id",
    "project_id",
    "name",
    "description",
    "category",
    "status",
    "fiscal_year",
    "period_start",
    "period_end",
    "requested_by",
    "approved_by",
    "approved_date",
    "currency",
    "notes",
)
STATUS_TRANSITIONS = {
    "draft": ("active",),
    "active": ("on_hold", "closed"),
    "on_hold": ("active", "closed"),
    "closed": (),
}


def calculate_budget_variance(allocated: float, spent: float) -> Tuple[float, float, float]:
    """
    Derived budget figures

    Returns:
        (remaining, variance, variance_percent); variance_percent is 0 when
        nothing is allocated
    """
    remaining = allocated - spent
    variance = allocated - spent
    variance_percent = variance / allocated * 100 if allocated > 0 else 0.0
    return remaining, variance, variance_percent


def with_derived_fields(budget: Budget) -> Budget:
    remaining, variance, variance_percent = calculate_budget_variance(budget.allocated, budget.spent)
    return replace(budget, remaining=remaining, variance=variance, variance_percent=variance_percent)


def check_status_transition(current: str, target: str) -> None:
    if target == current:
        return
    if target not in STATUS_TRANSITIONS.get(current, ()):
        raise ValidationError(f"Cannot move budget from {current} to {target}")


def append_note(existing: str, note: str) -> str:
    return f"{existing}\n{note}" if existing else note


def _non_negative(amount: Any, message: str) -> float:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ValidationError(f"Amount must be a number, got {amount!r}") from None
    if value < 0:
        raise ValidationError(message)
    return value


class BudgetService:
    """Budget records in the ``Budgets`` sheet."""

    def __init__(self, store: RowStore, events: Optional[EventBus] = None) -> None:
        self.store = store
        self.events = events

    async def _publish(self, event_type: str, budget: Budget, user_id: Optional[str], **extra: Any) -> None:
        if self.events:
            await self.events.publish(
                event_type,
                {"budget_id": budget.budget_id, **extra},
                program_id=budget.program_id,
                user_id=user_id,
            )

    async def _save(self, budget: Budget, changed: Dict[str, Any]) -> None:
        await self.store.update_record(BUDGET_SCHEMA, budget.budget_id, changed)

    @wraps_errors("create budget")
    async def create_budget(self, data: Dict[str, Any], created_by: str) -> Budget:
        """
        Create a draft budget

        Args:
            data: Budget fields; program_id, name, category, allocated,
                fiscal_year, period_start, period_end and requested_by are required
            created_by: User creating the budget

        Returns:
            The stored Budget
        """
        missing = [name for name in REQUIRED_CREATE_FIELDS if data.get(name) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
        values = coerce_input(BUDGET_SCHEMA, data, CREATE_FIELDS)
        if values["allocated"] < 0:
            raise ValidationError("Allocated amount must be non-negative")
        if values["period_end"] < values["period_start"]:
            raise ValidationError("Budget period end must not precede its start")

        now = utcnow()
        budget = with_derived_fields(
            Budget(
                budget_id=await self.store.next_id(BUDGET_SCHEMA),
                status="draft",
                committed=0.0,
                spent=0.0,
                created_date=now,
                created_by=created_by,
                last_modified=now,
                **values,
            )
        )
        await self.store.append_record(BUDGET_SCHEMA, budget.to_row())
        LOGGER.info("Created budget %s for %s (%.2f)", budget.budget_id, budget.program_id, budget.allocated)
        await self._publish("budget_created", budget, created_by, allocated=budget.allocated)
        return budget

    @wraps_errors("read budget")
    async def read_budget(self, budget_id: str) -> Optional[Budget]:
        match = await self.store.find_record(BUDGET_SCHEMA, budget_id)
        if match is None:
            return None
        return with_derived_fields(Budget.from_row(match.row))

    @wraps_errors("update budget")
    async def update_budget(self, budget_id: str, updates: Dict[str, Any], modified_by: str) -> Optional[Budget]:
        """Apply field updates and recompute remaining and variance. Returns None if absent."""

        values = coerce_input(BUDGET_SCHEMA, updates, UPDATABLE_FIELDS)
        existing = await self.read_budget(budget_id)
        if existing is None:
            return None
        if "status" in values:
            check_status_transition(existing.status, values["status"])

        updated = with_derived_fields(replace(existing, last_modified=utcnow(), **values))
        changed = dict(values)
        changed.update(
            remaining=updated.remaining,
            variance=updated.variance,
            variance_percent=updated.variance_percent,
            last_modified=updated.last_modified,
        )
        await self._save(updated, changed)
        LOGGER.debug("Budget %s updated by %s: %s", budget_id, modified_by, sorted(values))
        return updated

    @wraps_errors("list budgets")
    async def list_budgets(
        self,
        program_id: Optional[str] = None,
        project_id: Optional[str] = None,
        fiscal_year: Optional[str] = None,
        category: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Budget]:
        rows = await self.store.read_data_rows(BUDGET_SCHEMA)
        budgets = [with_derived_fields(budget) for budget in decode_rows(BUDGET_SCHEMA, rows, Budget, LOGGER)]
        filters = {
            "program_id": program_id,
            "project_id": project_id,
            "fiscal_year": None if fiscal_year is None else str(fiscal_year),
            "category": category,
            "status": status,
        }
        for name, expected in filters.items():
            if expected is not None:
                budgets = [budget for budget in budgets if getattr(budget, name) == expected]
        return budgets

    @wraps_errors("allocate budget")
    async def allocate_budget(self, budget_id: str, amount: Any, allocated_by: str) -> Optional[Budget]:
        """Set the allocated amount (replaces the previous allocation)."""

        amount = _non_negative(amount, "Allocated amount must be non-negative")
        budget = await self.read_budget(budget_id)
        if budget is None:
            return None

        now = utcnow()
        note = f"Allocated {amount} by {allocated_by} on {now.isoformat()}"
        updated = with_derived_fields(replace(budget, allocated=amount, last_modified=now, notes=append_note(budget.notes, note)))
        await self._save(
            updated,
            {
                "allocated": updated.allocated,
                "remaining": updated.remaining,
                "variance": updated.variance,
                "variance_percent": updated.variance_percent,
                "last_modified": now,
                "notes": updated.notes,
            },
        )
        await self._publish("budget_allocated", updated, allocated_by, amount=amount)
        return updated

    @wraps_errors("commit budget")
    async def commit_budget(self, budget_id: str, amount: Any, committed_by: str) -> Optional[Budget]:
        """Reserve funds against the allocation."""

        amount = _non_negative(amount, "Committed amount must be non-negative")
        budget = await self.read_budget(budget_id)
        if budget is None:
            return None
        if budget.committed + amount > budget.allocated:
            raise ValidationError(
                f"Cannot commit {amount}. Would exceed allocated budget of {budget.allocated} "
                f"(current committed: {budget.committed})"
            )

        now = utcnow()
        note = f"Committed {amount} by {committed_by} on {now.isoformat()}"
        updated = replace(budget, committed=budget.committed + amount, last_modified=now, notes=append_note(budget.notes, note))
        await self._save(updated, {"committed": updated.committed, "last_modified": now, "notes": updated.notes})
        await self._publish("budget_committed", updated, committed_by, amount=amount)
        return updated

    @wraps_errors("record expense")
    async def record_expense(self, budget_id: str, amount: Any, description: str, recorded_by: str) -> Optional[Budget]:
        """Add to spent. Overspending is allowed and logged as a warning."""

        amount = _non_negative(amount, "Expense amount must be non-negative")
        budget = await self.read_budget(budget_id)
        if budget is None:
            return None

        new_spent = budget.spent + amount
        if new_spent > budget.allocated:
            LOGGER.warning(
                "Budget %s will exceed allocation: spent %.2f of %.2f", budget_id, new_spent, budget.allocated
            )

        now = utcnow()
        note = f"Expense {amount} ({description}) by {recorded_by} on {now.isoformat()}"
        updated = with_derived_fields(replace(budget, spent=new_spent, last_modified=now, notes=append_note(budget.notes, note)))
        await self._save(
            updated,
            {
                "spent": updated.spent,
                "remaining": updated.remaining,
                "variance": updated.variance,
                "variance_percent": updated.variance_percent,
                "last_modified": now,
                "notes": updated.notes,
            },
        )
        await self._publish("expense_recorded", updated, recorded_by, amount=amount, description=description)
        return updated

    @wraps_errors("get budget status")
    async def get_budget_status(self, program_id: str) -> Dict[str, float]:
        budgets = await self.list_budgets(program_id=program_id)
        return {
            "allocated": round(sum(budget.allocated for budget in budgets), 2),
            "committed": round(sum(budget.committed for budget in budgets), 2),
            "spent": round(sum(budget.spent for budget in budgets), 2),
            "remaining": round(sum(budget.remaining for budget in budgets), 2),
            "budget_count": len(budgets),
        }

    @wraps_errors("delete budget")
    async def delete_budget(self, budget_id: str, deleted_by: str) -> bool:
        """Soft delete: the budget is closed and kept for audit."""

        budget = await self.read_budget(budget_id)
        if budget is None:
            return False
        now = utcnow()
        notes = append_note(budget.notes, f"Deleted by {deleted_by} on {now.isoformat()}")
        await self._save(budget, {"status": "closed", "last_modified": now, "notes": notes})
        LOGGER.info("Budget %s closed by %s", budget_id, deleted_by)
        await self._publish("budget_closed", replace(budget, status="closed"), deleted_by)
        return True

    @wraps_errors("get over budget items")
    async def get_over_budget_items(self, program_id: Optional[str] = None) -> List[Budget]:
        budgets = await self.list_budgets(program_id=program_id)
        return [budget for budget in budgets if budget.spent > budget.allocated]

    @wraps_errors("get budgets nearing limit")
    async def get_budgets_nearing_limit(self, threshold_percent: float = 80, program_id: Optional[str] = None) -> List[Budget]:
        """Budgets whose spend reached ``threshold_percent`` of allocation without exceeding it."""

        if threshold_percent < 0 or threshold_percent > 100:
            raise ValidationError("Threshold must be between 0 and 100")
        budgets = await self.list_budgets(program_id=program_id)
        return [
            budget
            for budget in budgets
            if budget.allocated > 0
            and budget.spent / budget.allocated * 100 >= threshold_percent
            and budget.spent <= budget.allocated
        ]

    @wraps_errors("calculate burn rate")
    async def calculate_burn_rate(self, budget_id: str) -> Optional[Dict[str, Any]]:
        """
        Spend velocity since the budget period started

        Returns:
            Dict with daily_burn, weekly_burn, monthly_burn, days_remaining
            (``inf`` when nothing is being spent) and projected_depletion_date,
            or None when the budget does not exist
        """
        budget = await self.read_budget(budget_id)
        if budget is None:
            return None

        now = utcnow()
        if budget.period_start is None:
            raise ValidationError(f"Budget {budget_id} has no period start")
        elapsed_days = (now - parse_datetime(budget.period_start)).total_seconds() / 86400
        if elapsed_days <= 0:
            return {
                "daily_burn": 0.0,
                "weekly_burn": 0.0,
                "monthly_burn": 0.0,
                "days_remaining": 0,
                "projected_depletion_date": None,
            }

        daily = budget.spent / elapsed_days
        days_remaining = budget.remaining / daily if daily > 0 else math.inf
        depletion = None if math.isinf(days_remaining) else now + timedelta(days=days_remaining)
        return {
            "daily_burn": round(daily, 2),
            "weekly_burn": round(daily * 7, 2),
            "monthly_burn": round(daily * 30, 2),
            "days_remaining": days_remaining if math.isinf(days_remaining) else round(days_remaining),
            "projected_depletion_date": depletion,
        }
