"""Cash flow records in the ``Cash Flow`` sheet.

Flows start out ``forecasted``; recording the actual movement marks them
``completed`` and deleting cancels them. Nothing is physically removed.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import timedelta
from typing import Any, Dict, List, Optional

from .budgets import append_note
from .dates import parse_datetime, parse_optional_datetime, utcnow
from .errors import ValidationError, wraps_errors
from .events import EventBus
from .models import CASH_FLOW_SCHEMA, CASH_FLOW_STATUSES, CASH_FLOW_TYPES, CashFlow
from .row_store import RowStore
from .schema import coerce_input, decode_rows

LOGGER = logging.getLogger(__name__)

EXPECTED_STATUSES = ("forecasted", "scheduled", "pending")

REQUIRED_CREATE_FIELDS = ("program_id", "type", "category", "description", "amount", "forecast_date")
CREATE_FIELDS = REQUIRED_CREATE_FIELDS + (
    "currency",
    "invoice_id",
    "contract_id",
    "budget_id",
    "payment_method",
    "payment_reference",
    "notes",
)
UPDATABLE_FIELDS = CREATE_FIELDS + ("actual_date", "status")


class CashFlowService:
    def __init__(self, store: RowStore, events: Optional[EventBus] = None) -> None:
        self.store = store
        self.events = events

    @wraps_errors("create cash flow")
    async def create_cash_flow(self, data: Dict[str, Any], created_by: str) -> CashFlow:
        missing = [name for name in REQUIRED_CREATE_FIELDS if data.get(name) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
        if data.get("type") not in CASH_FLOW_TYPES:
            raise ValidationError(f"Cash flow type must be one of: {', '.join(CASH_FLOW_TYPES)}")
        values = coerce_input(CASH_FLOW_SCHEMA, data, CREATE_FIELDS)
        if values["amount"] < 0:
            raise ValidationError("Cash flow amount must be non-negative")

        now = utcnow()
        flow = CashFlow(
            flow_id=await self.store.next_id(CASH_FLOW_SCHEMA),
            status="forecasted",
            created_date=now,
            created_by=created_by,
            last_modified=now,
            **values,
        )
        await self.store.append_record(CASH_FLOW_SCHEMA, flow.to_row())
        LOGGER.info("Created %s %s for %s (%.2f)", flow.type, flow.flow_id, flow.program_id, flow.amount)
        if self.events:
            await self.events.publish(
                "cash_flow_created",
                {"flow_id": flow.flow_id, "type": flow.type, "amount": flow.amount},
                program_id=flow.program_id,
                user_id=created_by,
            )
        return flow

    @wraps_errors("read cash flow")
    async def read_cash_flow(self, flow_id: str) -> Optional[CashFlow]:
        match = await self.store.find_record(CASH_FLOW_SCHEMA, flow_id)
        if match is None:
            return None
        return CashFlow.from_row(match.row)

    async def _apply_update(self, existing: CashFlow, values: Dict[str, Any]) -> CashFlow:
        changed = dict(values)
        changed["last_modified"] = utcnow()
        await self.store.update_record(CASH_FLOW_SCHEMA, existing.flow_id, changed)
        return replace(existing, **changed)

    @wraps_errors("update cash flow")
    async def update_cash_flow(self, flow_id: str, updates: Dict[str, Any], modified_by: str) -> Optional[CashFlow]:
        values = coerce_input(CASH_FLOW_SCHEMA, updates, UPDATABLE_FIELDS)
        if "amount" in values and values["amount"] < 0:
            raise ValidationError("Cash flow amount must be non-negative")
        existing = await self.read_cash_flow(flow_id)
        if existing is None:
            return None
        LOGGER.debug("Cash flow %s updated by %s: %s", flow_id, modified_by, sorted(values))
        return await self._apply_update(existing, values)

    @wraps_errors("list cash flows")
    async def list_cash_flows(
        self,
        program_id: Optional[str] = None,
        type: Optional[str] = None,
        status: Optional[str] = None,
        start_date: Any = None,
        end_date: Any = None,
    ) -> List[CashFlow]:
        """List flows; the date window applies to the forecast date."""

        if type is not None and type not in CASH_FLOW_TYPES:
            raise ValidationError(f"Unknown cash flow type: {type}")
        if status is not None and status not in CASH_FLOW_STATUSES:
            raise ValidationError(f"Unknown cash flow status: {status}")
        start = parse_optional_datetime(start_date)
        end = parse_optional_datetime(end_date)

        rows = await self.store.read_data_rows(CASH_FLOW_SCHEMA)
        selected = []
        for flow in decode_rows(CASH_FLOW_SCHEMA, rows, CashFlow, LOGGER):
            if program_id and flow.program_id != program_id:
                continue
            if type and flow.type != type:
                continue
            if status and flow.status != status:
                continue
            if start and flow.forecast_date < start:
                continue
            if end and flow.forecast_date > end:
                continue
            selected.append(flow)
        return selected

    @wraps_errors("delete cash flow")
    async def delete_cash_flow(self, flow_id: str, deleted_by: str) -> bool:
        existing = await self.read_cash_flow(flow_id)
        if existing is None:
            return False
        note = f"Cancelled by {deleted_by} on {utcnow().isoformat()}"
        await self._apply_update(existing, {"status": "cancelled", "notes": append_note(existing.notes, note)})
        LOGGER.info("Cancelled cash flow %s", flow_id)
        return True

    @wraps_errors("record actual cash flow")
    async def record_actual_cash_flow(
        self, flow_id: str, actual_date: Any, actual_amount: float, recorded_by: str
    ) -> Optional[CashFlow]:
        """Record the realised date and amount and mark the flow completed."""

        actual = parse_datetime(actual_date)
        if actual_amount < 0:
            raise ValidationError("Cash flow amount must be non-negative")
        existing = await self.read_cash_flow(flow_id)
        if existing is None:
            return None
        if existing.status == "completed":
            raise ValidationError(f"Cash flow {flow_id} is already completed. Cannot record actual flow.")
        if existing.status == "cancelled":
            raise ValidationError(f"Cash flow {flow_id} is cancelled. Cannot record actual flow.")

        note = f"Actual flow recorded by {recorded_by} on {utcnow().isoformat()}"
        updated = await self._apply_update(
            existing,
            {
                "actual_date": actual,
                "amount": float(actual_amount),
                "status": "completed",
                "notes": append_note(existing.notes, note),
            },
        )
        if self.events:
            await self.events.publish(
                "cash_flow_completed",
                {"flow_id": flow_id, "type": updated.type, "amount": updated.amount},
                program_id=updated.program_id,
                user_id=recorded_by,
            )
        return updated

    @wraps_errors("get upcoming cash flows")
    async def get_upcoming_cash_flows(self, program_id: str, days_ahead: int = 30) -> List[CashFlow]:
        now = utcnow()
        flows = await self.list_cash_flows(program_id=program_id, start_date=now, end_date=now + timedelta(days=days_ahead))
        return [flow for flow in flows if flow.status in EXPECTED_STATUSES and flow.actual_date is None]

    @wraps_errors("get overdue cash flows")
    async def get_overdue_cash_flows(self, program_id: str) -> List[CashFlow]:
        now = utcnow()
        flows = await self.list_cash_flows(program_id=program_id)
        return [
            flow
            for flow in flows
            if flow.status in EXPECTED_STATUSES and flow.actual_date is None and flow.forecast_date < now
        ]

    @wraps_errors("get cash flow projection")
    async def get_cash_flow_projection(self, program_id: str, start_date: Any, end_date: Any) -> Dict[str, Any]:
        flows = await self.list_cash_flows(program_id=program_id, start_date=start_date, end_date=end_date)
        total_inflow = 0.0
        total_outflow = 0.0
        inflow_by_category: Dict[str, float] = {}
        outflow_by_category: Dict[str, float] = {}
        for flow in flows:
            if flow.status == "cancelled":
                continue
            if flow.type == "inflow":
                total_inflow += flow.amount
                inflow_by_category[flow.category] = inflow_by_category.get(flow.category, 0.0) + flow.amount
            else:
                total_outflow += flow.amount
                outflow_by_category[flow.category] = outflow_by_category.get(flow.category, 0.0) + flow.amount
        return {
            "total_inflow": round(total_inflow, 2),
            "total_outflow": round(total_outflow, 2),
            "net_flow": round(total_inflow - total_outflow, 2),
            "inflow_by_category": inflow_by_category,
            "outflow_by_category": outflow_by_category,
        }

    @wraps_errors("get cash flow status")
    async def get_cash_flow_status(self, program_id: str) -> Dict[str, int]:
        flows = await self.list_cash_flows(program_id=program_id)
        status = {name: 0 for name in CASH_FLOW_STATUSES}
        for flow in flows:
            status[flow.status] += 1
        status["total"] = len(flows)
        return status

    @wraps_errors("reconcile cash flow")
    async def reconcile_cash_flow(self, flow_id: str, reconciled_by: str) -> Optional[CashFlow]:
        existing = await self.read_cash_flow(flow_id)
        if existing is None:
            return None
        if existing.status != "completed":
            raise ValidationError(f"Cash flow {flow_id} must be completed before reconciliation")
        note = f"Reconciled by {reconciled_by} on {utcnow().isoformat()}"
        return await self._apply_update(existing, {"notes": append_note(existing.notes, note)})
