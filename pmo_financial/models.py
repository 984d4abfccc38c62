"""Sheet layouts and typed records for the financial workbook.

Each ``*_SCHEMA`` is the only place a sheet's column order is defined; every
reader, writer and calculator resolves column positions through it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar, Optional

from .schema import Column, Record, SheetSchema

BUDGET_STATUSES = ("draft", "active", "on_hold", "closed")
TRANSACTION_TYPES = ("expense", "revenue", "transfer", "adjustment")
CASH_FLOW_TYPES = ("inflow", "outflow")
CASH_FLOW_STATUSES = ("forecasted", "scheduled", "pending", "completed", "cancelled")
SNAPSHOT_TRENDS = ("improving", "stable", "declining")
DELIVERABLE_TYPES = (
    "document",
    "design",
    "software",
    "hardware",
    "training",
    "report",
    "presentation",
    "prototype",
    "data",
    "other",
)


BUDGET_SCHEMA = SheetSchema(
    "Budgets",
    [
        Column("budget_id", "Budget ID", required=True),
        Column("program_id", "Program ID", required=True),
        Column("project_id", "Project ID"),
        Column("name", "Name", default=""),
        Column("description", "Description", default=""),
        Column("category", "Category", default=""),
        Column("status", "Status", default="draft", choices=BUDGET_STATUSES),
        Column("allocated", "Allocated", "float", default=0.0),
        Column("committed", "Committed", "float", default=0.0),
        Column("spent", "Spent", "float", default=0.0),
        Column("remaining", "Remaining", "float", default=0.0),
        Column("fiscal_year", "Fiscal Year", default=""),
        Column("period_start", "Period Start", "datetime"),
        Column("period_end", "Period End", "datetime"),
        Column("variance", "Variance", "float", default=0.0),
        Column("variance_percent", "Variance %", "float", default=0.0),
        Column("requested_by", "Requested By", default=""),
        Column("approved_by", "Approved By"),
        Column("approved_date", "Approved Date", "datetime"),
        Column("currency", "Currency", default="USD"),
        Column("created_date", "Created Date", "datetime"),
        Column("created_by", "Created By", default=""),
        Column("last_modified", "Last Modified", "datetime"),
        Column("notes", "Notes", default=""),
    ],
    id_prefix="BUD",
)

SNAPSHOT_SCHEMA = SheetSchema(
    "EVM Snapshots",
    [
        Column("snapshot_id", "Snapshot ID", required=True),
        Column("program_id", "Program ID", required=True),
        Column("project_id", "Project ID"),
        Column("snapshot_date", "Snapshot Date", "datetime", required=True),
        Column("reporting_period", "Reporting Period", default=""),
        Column("pv", "PV", "float", default=0.0),
        Column("ev", "EV", "float", default=0.0),
        Column("ac", "AC", "float", default=0.0),
        Column("sv", "SV", "float", default=0.0),
        Column("cv", "CV", "float", default=0.0),
        Column("sv_percent", "SV %", "float", default=0.0),
        Column("cv_percent", "CV %", "float", default=0.0),
        Column("spi", "SPI", "float", default=0.0),
        Column("cpi", "CPI", "float", default=0.0),
        Column("bac", "BAC", "float", default=0.0),
        Column("eac", "EAC", "float", default=0.0),
        Column("etc", "ETC", "float", default=0.0),
        Column("vac", "VAC", "float", default=0.0),
        Column("tcpi", "TCPI", "float", default=0.0),
        Column("percent_complete", "Percent Complete", "float", default=0.0),
        Column("percent_schedule_complete", "Percent Schedule Complete", "float", default=0.0),
        Column("trend", "Trend", default="stable", choices=SNAPSHOT_TRENDS),
        Column("calculated_by", "Calculated By", default=""),
        Column("calculated_date", "Calculated Date", "datetime"),
        Column("notes", "Notes", default=""),
    ],
    id_prefix="SNAP",
)

TRANSACTION_SCHEMA = SheetSchema(
    "Transactions",
    [
        Column("transaction_id", "Transaction ID", required=True),
        Column("program_id", "Program ID", required=True),
        Column("project_id", "Project ID"),
        Column("type", "Type", required=True, choices=TRANSACTION_TYPES),
        Column("category", "Category", default=""),
        Column("amount", "Amount", "float", default=0.0),
        Column("currency", "Currency", default="USD"),
        Column("transaction_date", "Transaction Date", "datetime", required=True),
        Column("description", "Description", default=""),
        Column("budget_id", "Budget ID"),
        Column("invoice_id", "Invoice ID"),
        Column("contract_id", "Contract ID"),
        Column("vendor_id", "Vendor ID"),
        Column("payment_method", "Payment Method"),
        Column("reference", "Reference"),
        Column("reconciled", "Reconciled", "bool", default=False),
        Column("reconciled_date", "Reconciled Date", "datetime"),
        Column("reconciled_by", "Reconciled By"),
        Column("notes", "Notes", default=""),
        Column("created_date", "Created Date", "datetime"),
        Column("created_by", "Created By", default=""),
        Column("modified_date", "Modified Date", "datetime"),
        Column("modified_by", "Modified By"),
    ],
    id_prefix="TXN",
)

CASH_FLOW_SCHEMA = SheetSchema(
    "Cash Flow",
    [
        Column("flow_id", "Flow ID", required=True),
        Column("program_id", "Program ID", required=True),
        Column("type", "Type", required=True, choices=CASH_FLOW_TYPES),
        Column("category", "Category", default=""),
        Column("description", "Description", default=""),
        Column("amount", "Amount", "float", default=0.0),
        Column("currency", "Currency", default="USD"),
        Column("forecast_date", "Forecast Date", "datetime", required=True),
        Column("actual_date", "Actual Date", "datetime"),
        Column("status", "Status", default="forecasted", choices=CASH_FLOW_STATUSES),
        Column("invoice_id", "Invoice ID"),
        Column("contract_id", "Contract ID"),
        Column("budget_id", "Budget ID"),
        Column("payment_method", "Payment Method"),
        Column("payment_reference", "Payment Reference"),
        Column("created_date", "Created Date", "datetime"),
        Column("created_by", "Created By", default=""),
        Column("last_modified", "Last Modified", "datetime"),
        Column("notes", "Notes", default=""),
    ],
    id_prefix="CF",
)

DELIVERABLE_SCHEMA = SheetSchema(
    "Deliverables",
    [
        Column("deliverable_id", "Deliverable ID", required=True),
        Column("program_id", "Program ID", required=True),
        Column("name", "Name", default=""),
        Column("budgeted_cost", "Budgeted Cost", "float", default=0.0),
        Column("percent_complete", "Percent Complete", "float", default=0.0),
        Column("status", "Status", default=""),
        Column("due_date", "Due Date", "datetime"),
    ],
    id_prefix="D",
)

QUALITY_CHECKLIST_SCHEMA = SheetSchema(
    "Quality Checklists",
    [
        Column("checklist_id", "Checklist ID", required=True),
        Column("name", "Name", default=""),
        Column("description", "Description", default=""),
        Column("deliverable_type", "Deliverable Type", default="all", choices=DELIVERABLE_TYPES + ("all",)),
        Column("created_by", "Created By", default=""),
        Column("created_date", "Created Date", "datetime"),
        Column("active", "Active", "bool", default=False),
    ],
    id_prefix="QC",
)

QUALITY_CRITERION_SCHEMA = SheetSchema(
    "Quality Criteria",
    [
        Column("criterion_id", "Criterion ID", required=True),
        Column("checklist_id", "Checklist ID", required=True),
        Column("name", "Name", default=""),
        Column("description", "Description", default=""),
        Column("category", "Category", default="quality"),
        Column("required", "Required", "bool", default=False),
        Column("weight", "Weight", "float", default=1.0),
        Column("guidance", "Guidance", default=""),
    ],
)

QUALITY_RESULT_SCHEMA = SheetSchema(
    "Quality Checklist Results",
    [
        Column("result_id", "Result ID", required=True),
        Column("checklist_id", "Checklist ID", required=True),
        Column("deliverable_id", "Deliverable ID", required=True),
        Column("review_id", "Review ID"),
        Column("evaluated_by", "Evaluated By", default=""),
        Column("evaluated_date", "Evaluated Date", "datetime"),
        Column("overall_score", "Overall Score", "float", default=0.0),
        Column("passed", "Passed", "bool", default=False),
        Column("comments", "Comments", default=""),
    ],
    id_prefix="QCR",
)

ALL_SCHEMAS = (
    BUDGET_SCHEMA,
    SNAPSHOT_SCHEMA,
    TRANSACTION_SCHEMA,
    CASH_FLOW_SCHEMA,
    DELIVERABLE_SCHEMA,
    QUALITY_CHECKLIST_SCHEMA,
    QUALITY_CRITERION_SCHEMA,
    QUALITY_RESULT_SCHEMA,
)


@dataclass
class Budget(Record):
    SCHEMA: ClassVar[SheetSchema] = BUDGET_SCHEMA

    budget_id: str
    program_id: str
    project_id: Optional[str] = None
    name: str = ""
    description: str = ""
    category: str = ""
    status: str = "draft"
    allocated: float = 0.0
    committed: float = 0.0
    spent: float = 0.0
    remaining: float = 0.0
    fiscal_year: str = ""
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    variance: float = 0.0
    variance_percent: float = 0.0
    requested_by: str = ""
    approved_by: Optional[str] = None
    approved_date: Optional[datetime] = None
    currency: str = "USD"
    created_date: Optional[datetime] = None
    created_by: str = ""
    last_modified: Optional[datetime] = None
    notes: str = ""


@dataclass
class EVMSnapshot(Record):
    SCHEMA: ClassVar[SheetSchema] = SNAPSHOT_SCHEMA

    snapshot_id: str
    program_id: str
    snapshot_date: datetime
    project_id: Optional[str] = None
    reporting_period: str = ""
    pv: float = 0.0
    ev: float = 0.0
    ac: float = 0.0
    sv: float = 0.0
    cv: float = 0.0
    sv_percent: float = 0.0
    cv_percent: float = 0.0
    spi: float = 0.0
    cpi: float = 0.0
    bac: float = 0.0
    eac: float = 0.0
    etc: float = 0.0
    vac: float = 0.0
    tcpi: float = 0.0
    percent_complete: float = 0.0
    percent_schedule_complete: float = 0.0
    trend: str = "stable"
    calculated_by: str = ""
    calculated_date: Optional[datetime] = None
    notes: str = ""


@dataclass
class Transaction(Record):
    SCHEMA: ClassVar[SheetSchema] = TRANSACTION_SCHEMA

    transaction_id: str
    program_id: str
    type: str
    transaction_date: datetime
    project_id: Optional[str] = None
    category: str = ""
    amount: float = 0.0
    currency: str = "USD"
    description: str = ""
    budget_id: Optional[str] = None
    invoice_id: Optional[str] = None
    contract_id: Optional[str] = None
    vendor_id: Optional[str] = None
    payment_method: Optional[str] = None
    reference: Optional[str] = None
    reconciled: bool = False
    reconciled_date: Optional[datetime] = None
    reconciled_by: Optional[str] = None
    notes: str = ""
    created_date: Optional[datetime] = None
    created_by: str = ""
    modified_date: Optional[datetime] = None
    modified_by: Optional[str] = None


@dataclass
class CashFlow(Record):
    SCHEMA: ClassVar[SheetSchema] = CASH_FLOW_SCHEMA

    flow_id: str
    program_id: str
    type: str
    forecast_date: datetime
    category: str = ""
    description: str = ""
    amount: float = 0.0
    currency: str = "USD"
    actual_date: Optional[datetime] = None
    status: str = "forecasted"
    invoice_id: Optional[str] = None
    contract_id: Optional[str] = None
    budget_id: Optional[str] = None
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    created_date: Optional[datetime] = None
    created_by: str = ""
    last_modified: Optional[datetime] = None
    notes: str = ""

    @property
    def effective_date(self) -> datetime:
        return self.actual_date or self.forecast_date


@dataclass
class Deliverable(Record):
    SCHEMA: ClassVar[SheetSchema] = DELIVERABLE_SCHEMA

    deliverable_id: str
    program_id: str
    name: str = ""
    budgeted_cost: float = 0.0
    percent_complete: float = 0.0
    status: str = ""
    due_date: Optional[datetime] = None


@dataclass
class QualityCriterion(Record):
    SCHEMA: ClassVar[SheetSchema] = QUALITY_CRITERION_SCHEMA

    criterion_id: str
    checklist_id: str
    name: str = ""
    description: str = ""
    category: str = "quality"
    required: bool = False
    weight: float = 1.0
    guidance: str = ""


@dataclass
class QualityChecklistRow(Record):
    """Header row of a checklist; criteria live in their own sheet."""

    SCHEMA: ClassVar[SheetSchema] = QUALITY_CHECKLIST_SCHEMA

    checklist_id: str
    name: str = ""
    description: str = ""
    deliverable_type: str = "all"
    created_by: str = ""
    created_date: Optional[datetime] = None
    active: bool = False


@dataclass
class QualityChecklistResult(Record):
    SCHEMA: ClassVar[SheetSchema] = QUALITY_RESULT_SCHEMA

    result_id: str
    checklist_id: str
    deliverable_id: str
    review_id: Optional[str] = None
    evaluated_by: str = ""
    evaluated_date: Optional[datetime] = None
    overall_score: float = 0.0
    passed: bool = False
    comments: str = ""
