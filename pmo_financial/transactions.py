"""
Financial Transactions Module
Transaction ledger with void-on-delete and reconciliation
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

from .budgets import append_note
from .dates import parse_optional_datetime, utcnow
from .errors import NotFoundError, ValidationError, wraps_errors
from .events import EventBus
from .models import TRANSACTION_SCHEMA, TRANSACTION_TYPES, Transaction
from .row_store import RowStore
from .schema import coerce_input, decode_rows

LOGGER = logging.getLogger(__name__)

REQUIRED_CREATE_FIELDS = ("program_id", "type", "category", "amount", "transaction_date", "description")
CREATE_FIELDS = REQUIRED_CREATE_FIELDS + (
    "project_id",
    "currency",
    "budget_id",
    "invoice_id",
    "contract_id",
    "vendor_id",
    "payment_method",
    "reference",
    "notes",
)
UPDATABLE_FIELDS = CREATE_FIELDS


def _check_amount(transaction_type: str, amount: float) -> None:
    if transaction_type != "adjustment" and amount < 0:
        raise ValidationError("Amount must be positive for non-adjustment transactions")


class TransactionService:
    """Transactions in the ``Transactions`` sheet.

    Reconciled transactions are frozen: they can be neither updated nor voided.
    """

    def __init__(self, store: RowStore, events: Optional[EventBus] = None) -> None:
        self.store = store
        self.events = events

    @wraps_errors("create transaction")
    async def create_transaction(self, data: Dict[str, Any], created_by: str) -> Transaction:
        missing = [name for name in REQUIRED_CREATE_FIELDS if data.get(name) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
        values = coerce_input(TRANSACTION_SCHEMA, data, CREATE_FIELDS)
        _check_amount(values["type"], values["amount"])

        now = utcnow()
        transaction = Transaction(
            transaction_id=await self.store.next_id(TRANSACTION_SCHEMA),
            reconciled=False,
            created_date=now,
            created_by=created_by,
            modified_date=now,
            modified_by=created_by,
            **values,
        )
        await self.store.append_record(TRANSACTION_SCHEMA, transaction.to_row())
        LOGGER.info(
            "Created %s transaction %s for %s (%.2f)",
            transaction.type,
            transaction.transaction_id,
            transaction.program_id,
            transaction.amount,
        )
        if self.events:
            await self.events.publish(
                "transaction_created",
                {"transaction_id": transaction.transaction_id, "type": transaction.type, "amount": transaction.amount},
                program_id=transaction.program_id,
                user_id=created_by,
            )
        return transaction

    @wraps_errors("read transaction")
    async def read_transaction(self, transaction_id: str) -> Optional[Transaction]:
        match = await self.store.find_record(TRANSACTION_SCHEMA, transaction_id)
        if match is None:
            return None
        return Transaction.from_row(match.row)

    async def _apply_update(self, existing: Transaction, values: Dict[str, Any], modified_by: str) -> Transaction:
        if existing.reconciled:
            raise ValidationError(
                f"Transaction {existing.transaction_id} is reconciled and cannot be modified. "
                "Contact finance team to unreconcile first."
            )
        if "amount" in values:
            _check_amount(values.get("type", existing.type), values["amount"])

        changed = dict(values)
        changed.update(modified_date=utcnow(), modified_by=modified_by)
        updated = replace(existing, **changed)
        await self.store.update_record(TRANSACTION_SCHEMA, existing.transaction_id, changed)
        return updated

    @wraps_errors("update transaction")
    async def update_transaction(self, transaction_id: str, updates: Dict[str, Any], modified_by: str) -> Optional[Transaction]:
        values = coerce_input(TRANSACTION_SCHEMA, updates, UPDATABLE_FIELDS)
        existing = await self.read_transaction(transaction_id)
        if existing is None:
            return None
        return await self._apply_update(existing, values, modified_by)

    @wraps_errors("list transactions")
    async def list_transactions(
        self,
        program_id: Optional[str] = None,
        budget_id: Optional[str] = None,
        type: Optional[str] = None,
        start_date: Any = None,
        end_date: Any = None,
        reconciled: Optional[bool] = None,
    ) -> List[Transaction]:
        if type is not None and type not in TRANSACTION_TYPES:
            raise ValidationError(f"Unknown transaction type: {type}")
        start = parse_optional_datetime(start_date)
        end = parse_optional_datetime(end_date)

        rows = await self.store.read_data_rows(TRANSACTION_SCHEMA)
        selected = []
        for transaction in decode_rows(TRANSACTION_SCHEMA, rows, Transaction, LOGGER):
            if program_id and transaction.program_id != program_id:
                continue
            if budget_id and transaction.budget_id != budget_id:
                continue
            if type and transaction.type != type:
                continue
            if start and transaction.transaction_date < start:
                continue
            if end and transaction.transaction_date > end:
                continue
            if reconciled is not None and transaction.reconciled != reconciled:
                continue
            selected.append(transaction)
        return selected

    @wraps_errors("delete transaction")
    async def delete_transaction(self, transaction_id: str, deleted_by: str) -> bool:
        """Void a transaction: it becomes a zero adjustment and keeps its history in notes."""

        existing = await self.read_transaction(transaction_id)
        if existing is None:
            return False
        if existing.reconciled:
            raise ValidationError(
                f"Transaction {transaction_id} is reconciled and cannot be deleted. "
                "Contact finance team to unreconcile first."
            )
        notes = f"VOIDED by {deleted_by} on {utcnow().isoformat()}. Original: {existing.notes or ''}"
        await self._apply_update(existing, {"type": "adjustment", "amount": 0.0, "notes": notes}, deleted_by)
        LOGGER.info("Voided transaction %s", transaction_id)
        return True

    @wraps_errors("get transactions by budget")
    async def get_transactions_by_budget(self, budget_id: str) -> List[Transaction]:
        return await self.list_transactions(budget_id=budget_id)

    async def _positive_total(self, program_id: str, transaction_type: str, start_date: Any, end_date: Any) -> float:
        transactions = await self.list_transactions(
            program_id=program_id, type=transaction_type, start_date=start_date, end_date=end_date
        )
        return round(sum(txn.amount for txn in transactions if txn.amount > 0), 2)

    @wraps_errors("get total expenses")
    async def get_total_expenses(self, program_id: str, start_date: Any = None, end_date: Any = None) -> float:
        return await self._positive_total(program_id, "expense", start_date, end_date)

    @wraps_errors("get total revenue")
    async def get_total_revenue(self, program_id: str, start_date: Any = None, end_date: Any = None) -> float:
        return await self._positive_total(program_id, "revenue", start_date, end_date)

    @wraps_errors("reconcile transaction")
    async def reconcile_transaction(self, transaction_id: str, reconciled_by: str) -> Optional[Transaction]:
        """
        Mark a transaction as verified against its source documents

        Raises:
            OperationError: if the transaction is already reconciled, or has a
                zero amount and is not an adjustment
        """
        existing = await self.read_transaction(transaction_id)
        if existing is None:
            return None
        if existing.reconciled:
            reconciled_on = existing.reconciled_date.isoformat() if existing.reconciled_date else "an unknown date"
            raise ValidationError(f"Transaction {transaction_id} is already reconciled on {reconciled_on}")
        if existing.amount == 0 and existing.type != "adjustment":
            raise ValidationError(f"Transaction {transaction_id} has zero amount and cannot be reconciled")

        now = utcnow()
        changed = {
            "reconciled": True,
            "reconciled_date": now,
            "reconciled_by": reconciled_by,
            "modified_date": now,
            "modified_by": reconciled_by,
            "notes": append_note(existing.notes, f"Reconciled by {reconciled_by} on {now.isoformat()}"),
        }
        await self.store.update_record(TRANSACTION_SCHEMA, transaction_id, changed)
        updated = replace(existing, **changed)

        if self.events:
            await self.events.publish(
                "transaction_reconciled",
                {"transaction_id": transaction_id, "amount": updated.amount},
                program_id=updated.program_id,
                user_id=reconciled_by,
            )
        return updated

    @wraps_errors("get unreconciled transactions")
    async def get_unreconciled_transactions(self, program_id: Optional[str] = None) -> List[Transaction]:
        return await self.list_transactions(program_id=program_id, reconciled=False)

    @wraps_errors("get reconciled transactions")
    async def get_reconciled_transactions(
        self, program_id: str, start_date: Any = None, end_date: Any = None
    ) -> List[Transaction]:
        return await self.list_transactions(
            program_id=program_id, reconciled=True, start_date=start_date, end_date=end_date
        )

    @wraps_errors("get transaction summary by category")
    async def get_transaction_summary_by_category(
        self, program_id: str, start_date: Any = None, end_date: Any = None
    ) -> Dict[str, Dict[str, float]]:
        summary: Dict[str, Dict[str, float]] = {}
        for txn in await self.list_transactions(program_id=program_id, start_date=start_date, end_date=end_date):
            bucket = summary.setdefault(txn.category, {"count": 0, "total": 0.0})
            bucket["count"] += 1
            bucket["total"] = round(bucket["total"] + txn.amount, 2)
        return summary

    @wraps_errors("get transaction summary by type")
    async def get_transaction_summary_by_type(
        self, program_id: str, start_date: Any = None, end_date: Any = None
    ) -> Dict[str, Dict[str, float]]:
        summary: Dict[str, Dict[str, float]] = {
            txn_type: {"count": 0, "total": 0.0, "reconciled": 0} for txn_type in TRANSACTION_TYPES
        }
        for txn in await self.list_transactions(program_id=program_id, start_date=start_date, end_date=end_date):
            bucket = summary[txn.type]
            bucket["count"] += 1
            bucket["total"] = round(bucket["total"] + txn.amount, 2)
            if txn.reconciled:
                bucket["reconciled"] += 1
        return summary

    async def batch_reconcile_transactions(self, transaction_ids: Sequence[str], reconciled_by: str) -> Dict[str, Any]:
        """Reconcile each transaction in turn; failures are collected, successes are kept."""

        succeeded: List[str] = []
        failed: List[Dict[str, str]] = []
        for transaction_id in transaction_ids:
            try:
                result = await self.reconcile_transaction(transaction_id, reconciled_by)
                if result is None:
                    raise NotFoundError(f"Transaction {transaction_id} not found")
            except Exception as exc:
                LOGGER.warning("Could not reconcile %s: %s", transaction_id, exc)
                failed.append({"transaction_id": transaction_id, "error": str(exc)})
                continue
            succeeded.append(transaction_id)
        return {"succeeded": succeeded, "failed": failed}

    @wraps_errors("get transactions requiring reconciliation")
    async def get_transactions_requiring_reconciliation(self, program_id: str, days_old: int = 30) -> List[Transaction]:
        """Unreconciled transactions dated ``days_old`` days ago or earlier."""

        cutoff = utcnow() - timedelta(days=days_old)
        unreconciled = await self.get_unreconciled_transactions(program_id)
        return [txn for txn in unreconciled if txn.transaction_date <= cutoff]
