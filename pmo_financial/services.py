"""Wires the row store, event bus and services together from ``Settings``."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .budgets import BudgetService
from .cashflow import CashFlowService
from .cashflow_forecasting import CashFlowForecaster
from .config import Settings
from .events import EventBus, create_event_bus
from .evm_calculations import EVMCalculator
from .evm_forecasting import EVMForecaster
from .evm_snapshots import SnapshotService
from .evm_trending import TrendAnalyzer
from .models import ALL_SCHEMAS
from .program_context import ProgramContextManager
from .quality import QualityService
from .row_store import InMemoryRowStore, RowStore
from .scheduler import WorkflowScheduler
from .sheets_client import SheetsClient, SheetsRowStore
from .transactions import TransactionService

LOGGER = logging.getLogger(__name__)

ROW_STORES = ("memory", "sheets")


def create_row_store(settings: Settings) -> RowStore:
    """Build the configured row store; ``memory`` starts with every sheet's header row."""

    if settings.row_store not in ROW_STORES:
        raise ValueError(f"Unknown row store: {settings.row_store}")
    if settings.row_store == "sheets":
        LOGGER.info("Using Google Sheets row store for spreadsheet %s", settings.spreadsheet_id)
        return SheetsRowStore(SheetsClient.from_settings(settings))
    LOGGER.info("Using in-memory row store")
    return InMemoryRowStore(ALL_SCHEMAS)


@dataclass
class Services:
    settings: Settings
    store: RowStore
    events: EventBus
    context: ProgramContextManager
    budgets: BudgetService
    transactions: TransactionService
    cashflows: CashFlowService
    cashflow_forecaster: CashFlowForecaster
    calculator: EVMCalculator
    snapshots: SnapshotService
    trends: TrendAnalyzer
    forecaster: EVMForecaster
    quality: QualityService
    workflows: WorkflowScheduler


def build_services(
    settings: Optional[Settings] = None,
    store: Optional[RowStore] = None,
    events: Optional[EventBus] = None,
    context: Optional[ProgramContextManager] = None,
) -> Services:
    settings = settings or Settings.from_environment()
    store = store or create_row_store(settings)
    events = events or create_event_bus()
    calculator = EVMCalculator(store, settings.evm_policy)
    snapshots = SnapshotService(store, calculator, events)
    cashflows = CashFlowService(store, events)
    return Services(
        settings=settings,
        store=store,
        events=events,
        context=context or ProgramContextManager(),
        budgets=BudgetService(store, events),
        transactions=TransactionService(store, events),
        cashflows=cashflows,
        cashflow_forecaster=CashFlowForecaster(cashflows),
        calculator=calculator,
        snapshots=snapshots,
        trends=TrendAnalyzer(snapshots),
        forecaster=EVMForecaster(snapshots),
        quality=QualityService(store, events),
        workflows=WorkflowScheduler(),
    )
