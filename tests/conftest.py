"""Shared pytest configuration for the project test suite."""
from __future__ import annotations

import pytest

from pmo_financial.config import Settings
from pmo_financial.events import EventBus
from pmo_financial.models import ALL_SCHEMAS, BUDGET_SCHEMA, DELIVERABLE_SCHEMA
from pmo_financial.row_store import InMemoryRowStore
from pmo_financial.services import build_services


@pytest.fixture
def store() -> InMemoryRowStore:
    """Empty in-memory workbook with a header row on every sheet."""
    return InMemoryRowStore(ALL_SCHEMAS)


@pytest.fixture
def events() -> EventBus:
    return EventBus(source="pmo-financial-test")


@pytest.fixture
def settings() -> Settings:
    return Settings(snapshot_program_ids=["PRG-001"])


@pytest.fixture
def services(settings, store, events):
    return build_services(settings, store=store, events=events)


@pytest.fixture
def captured_events(events):
    """Every event published on the bus during the test."""
    received = []
    events.subscribe("*", received.append)
    return received


def budget_row(
    budget_id: str,
    program_id: str = "PRG-001",
    allocated: float = 100000.0,
    spent: float = 0.0,
    committed: float = 0.0,
    period_start: str = "2024-01-01T00:00:00+00:00",
    period_end: str = "2024-12-31T00:00:00+00:00",
    status: str = "active",
):
    values = {
        "budget_id": budget_id,
        "program_id": program_id,
        "name": f"Budget {budget_id}",
        "category": "labor",
        "status": status,
        "allocated": allocated,
        "committed": committed,
        "spent": spent,
        "remaining": allocated - spent,
        "fiscal_year": "2024",
        "period_start": period_start,
        "period_end": period_end,
        "requested_by": "pm",
        "currency": "USD",
    }
    return BUDGET_SCHEMA.encode(values)


def deliverable_row(deliverable_id: str, budgeted_cost: float, percent_complete: float, program_id: str = "PRG-001"):
    return DELIVERABLE_SCHEMA.encode(
        {
            "deliverable_id": deliverable_id,
            "program_id": program_id,
            "name": f"Deliverable {deliverable_id}",
            "budgeted_cost": budgeted_cost,
            "percent_complete": percent_complete,
            "status": "in_progress",
        }
    )


@pytest.fixture
def seed_budget(store):
    def _seed(budget_id: str, **kwargs):
        store.seed(BUDGET_SCHEMA, [budget_row(budget_id, **kwargs)])

    return _seed


@pytest.fixture
def seed_deliverable(store):
    def _seed(deliverable_id: str, budgeted_cost: float, percent_complete: float, program_id: str = "PRG-001"):
        store.seed(DELIVERABLE_SCHEMA, [deliverable_row(deliverable_id, budgeted_cost, percent_complete, program_id)])

    return _seed
