"""
Cash flow records: forecasts, actuals, cancellation and projections
"""

from datetime import timedelta

import pytest

from pmo_financial.dates import utcnow
from pmo_financial.errors import OperationError


def flow(**overrides):
    payload = {
        "program_id": "PRG-001",
        "type": "outflow",
        "category": "vendor",
        "description": "Hosting",
        "amount": 500,
        "forecast_date": (utcnow() + timedelta(days=10)).isoformat(),
    }
    payload.update(overrides)
    return payload


class TestCreateCashFlow:
    @pytest.mark.asyncio
    async def test_create_forecasted_flow(self, services, captured_events):
        created = await services.cashflows.create_cash_flow(flow(invoice_id="INV-7"), "treasury")

        assert created.flow_id == "CF-001"
        assert created.status == "forecasted"
        assert created.actual_date is None
        assert captured_events[0].event_type == "cash_flow_created"

        stored = await services.cashflows.read_cash_flow("CF-001")
        assert stored.invoice_id == "INV-7"
        assert stored.effective_date == stored.forecast_date

    @pytest.mark.asyncio
    async def test_type_must_be_inflow_or_outflow(self, services):
        with pytest.raises(OperationError, match="Cash flow type must be one of: inflow, outflow"):
            await services.cashflows.create_cash_flow(flow(type="transfer"), "treasury")

    @pytest.mark.asyncio
    async def test_negative_amount_rejected(self, services):
        with pytest.raises(OperationError, match="non-negative"):
            await services.cashflows.create_cash_flow(flow(amount=-5), "treasury")

    @pytest.mark.asyncio
    async def test_update(self, services):
        created = await services.cashflows.create_cash_flow(flow(), "treasury")
        updated = await services.cashflows.update_cash_flow(created.flow_id, {"status": "scheduled", "amount": 650}, "treasury")
        assert updated.status == "scheduled"
        assert (await services.cashflows.read_cash_flow(created.flow_id)).amount == 650
        assert await services.cashflows.update_cash_flow("CF-404", {"amount": 1}, "treasury") is None


class TestActuals:
    @pytest.mark.asyncio
    async def test_record_actual_completes_flow(self, services, captured_events):
        created = await services.cashflows.create_cash_flow(flow(), "treasury")
        actual_date = utcnow() + timedelta(days=12)

        completed = await services.cashflows.record_actual_cash_flow(created.flow_id, actual_date, 480, "treasury")

        assert completed.status == "completed"
        assert completed.amount == 480
        assert completed.effective_date == actual_date
        assert "Actual flow recorded by treasury" in completed.notes
        assert captured_events[-1].event_type == "cash_flow_completed"

    @pytest.mark.asyncio
    async def test_completed_flow_cannot_be_recorded_again(self, services):
        created = await services.cashflows.create_cash_flow(flow(), "treasury")
        await services.cashflows.record_actual_cash_flow(created.flow_id, utcnow(), 500, "treasury")

        with pytest.raises(OperationError, match="already completed"):
            await services.cashflows.record_actual_cash_flow(created.flow_id, utcnow(), 500, "treasury")

    @pytest.mark.asyncio
    async def test_cancelled_flow_cannot_be_recorded(self, services):
        created = await services.cashflows.create_cash_flow(flow(), "treasury")
        assert await services.cashflows.delete_cash_flow(created.flow_id, "treasury") is True

        cancelled = await services.cashflows.read_cash_flow(created.flow_id)
        assert cancelled.status == "cancelled"
        assert "Cancelled by treasury" in cancelled.notes
        with pytest.raises(OperationError, match="is cancelled"):
            await services.cashflows.record_actual_cash_flow(created.flow_id, utcnow(), 500, "treasury")

    @pytest.mark.asyncio
    async def test_reconcile_requires_completion(self, services):
        created = await services.cashflows.create_cash_flow(flow(), "treasury")
        with pytest.raises(OperationError, match="must be completed before reconciliation"):
            await services.cashflows.reconcile_cash_flow(created.flow_id, "controller")

        await services.cashflows.record_actual_cash_flow(created.flow_id, utcnow(), 500, "treasury")
        reconciled = await services.cashflows.reconcile_cash_flow(created.flow_id, "controller")
        assert "Reconciled by controller" in reconciled.notes


class TestCashFlowQueries:
    @pytest.fixture
    def book(self, services):
        async def _make():
            now = utcnow()
            await services.cashflows.create_cash_flow(flow(forecast_date=(now - timedelta(days=5)).isoformat()), "t")
            await services.cashflows.create_cash_flow(
                flow(type="inflow", category="billing", amount=2000, forecast_date=(now + timedelta(days=7)).isoformat()), "t"
            )
            await services.cashflows.create_cash_flow(flow(amount=300, forecast_date=(now + timedelta(days=20)).isoformat()), "t")
            await services.cashflows.create_cash_flow(flow(amount=900, forecast_date=(now + timedelta(days=60)).isoformat()), "t")
            cancelled = await services.cashflows.create_cash_flow(flow(amount=10000), "t")
            await services.cashflows.delete_cash_flow(cancelled.flow_id, "t")
            return now

        return _make

    @pytest.mark.asyncio
    async def test_upcoming_and_overdue(self, services, book):
        await book()

        upcoming = await services.cashflows.get_upcoming_cash_flows("PRG-001", days_ahead=30)
        assert [f.flow_id for f in upcoming] == ["CF-002", "CF-003"]

        overdue = await services.cashflows.get_overdue_cash_flows("PRG-001")
        assert [f.flow_id for f in overdue] == ["CF-001"]

    @pytest.mark.asyncio
    async def test_projection_ignores_cancelled(self, services, book):
        now = await book()

        projection = await services.cashflows.get_cash_flow_projection("PRG-001", now, now + timedelta(days=30))
        assert projection["total_inflow"] == 2000
        assert projection["total_outflow"] == 300
        assert projection["net_flow"] == 1700
        assert projection["inflow_by_category"] == {"billing": 2000}
        assert projection["outflow_by_category"] == {"vendor": 300}

    @pytest.mark.asyncio
    async def test_status_counts(self, services, book):
        await book()

        status = await services.cashflows.get_cash_flow_status("PRG-001")
        assert status["forecasted"] == 4
        assert status["cancelled"] == 1
        assert status["completed"] == 0
        assert status["total"] == 5

    @pytest.mark.asyncio
    async def test_list_filters(self, services, book):
        await book()

        inflows = await services.cashflows.list_cash_flows(program_id="PRG-001", type="inflow")
        assert [f.flow_id for f in inflows] == ["CF-002"]
        with pytest.raises(OperationError, match="Unknown cash flow status"):
            await services.cashflows.list_cash_flows(status="lost")
