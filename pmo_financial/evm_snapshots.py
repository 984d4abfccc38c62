"""Point-in-time EVM snapshots stored in the ``EVM Snapshots`` sheet.

Snapshots are append-only; their order is the order they were appended and
is never re-sorted by date.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .dates import add_months, parse_optional_datetime, utcnow
from .errors import wraps_errors
from .events import EventBus
from .evm_calculations import EVMCalculator, calculate_evm_metrics, calculate_health_index
from .evm_trending import extract_health_score
from .models import SNAPSHOT_SCHEMA, EVMSnapshot
from .row_store import RowStore
from .schema import decode_rows

LOGGER = logging.getLogger(__name__)

MAX_LIST_LIMIT = 1000


def determine_trend(health_status: str, cpi: float, spi: float) -> str:
    if health_status == "healthy" and (cpi >= 1.05 or spi >= 1.05):
        return "improving"
    if health_status == "critical" or (cpi < 0.9 and spi < 0.9):
        return "declining"
    return "stable"


def reporting_period(date: Any) -> str:
    return f"{date.year}-Q{(date.month - 1) // 3 + 1}"


def _index_trend(delta: float) -> str:
    if delta > 0.02:
        return "improving"
    if delta < -0.02:
        return "declining"
    return "stable"


def compare_snapshots(baseline: EVMSnapshot, current: EVMSnapshot) -> Dict[str, Any]:
    """Compare two snapshots; index moves within +/-0.02 count as stable."""

    return {
        "cpi_trend": _index_trend(current.cpi - baseline.cpi),
        "spi_trend": _index_trend(current.spi - baseline.spi),
        "cost_delta": round(current.cv - baseline.cv, 2),
        "schedule_delta": round(current.sv - baseline.sv, 2),
        "health_delta": extract_health_score(current.notes) - extract_health_score(baseline.notes),
    }


class SnapshotService:
    """Creates and queries EVM snapshots."""

    def __init__(self, store: RowStore, calculator: EVMCalculator, events: Optional[EventBus] = None) -> None:
        self.store = store
        self.calculator = calculator
        self.events = events

    async def _all_snapshots(self) -> List[EVMSnapshot]:
        rows = await self.store.read_data_rows(SNAPSHOT_SCHEMA)
        return decode_rows(SNAPSHOT_SCHEMA, rows, EVMSnapshot, LOGGER)

    @wraps_errors("create EVM snapshot")
    async def create_snapshot(
        self,
        program_id: str,
        snapshot_date: Any = None,
        created_by: str = "system",
    ) -> EVMSnapshot:
        """Calculate current EVM values for a program and persist them."""

        calculation = await self.calculator.perform_evm_calculation(program_id, snapshot_date)
        return await self.record_snapshot(
            program_id,
            calculation["pv"],
            calculation["ev"],
            calculation["ac"],
            calculation["bac"],
            snapshot_date=snapshot_date,
            created_by=created_by,
        )

    @wraps_errors("record EVM snapshot")
    async def record_snapshot(
        self,
        program_id: str,
        pv: float,
        ev: float,
        ac: float,
        bac: float,
        snapshot_date: Any = None,
        created_by: str = "system",
        project_id: Optional[str] = None,
    ) -> EVMSnapshot:
        """Persist a snapshot for already known base values."""

        now = utcnow()
        taken_at = parse_optional_datetime(snapshot_date) or now
        metrics = calculate_evm_metrics(pv, ev, ac, bac, self.calculator.policy)
        health = calculate_health_index(metrics)

        snapshot = EVMSnapshot(
            snapshot_id=await self.store.next_id(SNAPSHOT_SCHEMA),
            program_id=program_id,
            project_id=project_id,
            snapshot_date=taken_at,
            reporting_period=reporting_period(taken_at),
            pv=pv,
            ev=ev,
            ac=ac,
            sv=metrics["sv"],
            cv=metrics["cv"],
            sv_percent=metrics["sv_percent"],
            cv_percent=metrics["cv_percent"],
            spi=metrics["spi"],
            cpi=metrics["cpi"],
            bac=bac,
            eac=metrics["eac"],
            etc=metrics["etc"],
            vac=metrics["vac"],
            tcpi=metrics["tcpi"],
            percent_complete=round(ev / bac * 100, 2) if bac > 0 else 0.0,
            percent_schedule_complete=round(pv / bac * 100, 2) if bac > 0 else 0.0,
            trend=determine_trend(health["status"], metrics["cpi"], metrics["spi"]),
            calculated_by=created_by,
            calculated_date=now,
            notes=f"Health: {health['status']} (score: {health['score']})",
        )
        await self.store.append_record(SNAPSHOT_SCHEMA, snapshot.to_row())
        LOGGER.info("Recorded EVM snapshot %s for %s (%s)", snapshot.snapshot_id, program_id, health["status"])

        if self.events:
            await self.events.publish(
                "evm_snapshot_created",
                {"snapshot_id": snapshot.snapshot_id, "health": health},
                program_id=program_id,
                user_id=created_by,
            )
        return snapshot

    @wraps_errors("read EVM snapshot")
    async def read_snapshot(self, snapshot_id: str) -> Optional[EVMSnapshot]:
        match = await self.store.find_record(SNAPSHOT_SCHEMA, snapshot_id)
        if match is None:
            return None
        return EVMSnapshot.from_row(match.row)

    @wraps_errors("list EVM snapshots")
    async def list_snapshots(
        self,
        program_id: str,
        start_date: Any = None,
        end_date: Any = None,
        limit: int = 100,
    ) -> List[EVMSnapshot]:
        """Return a program's snapshots, most recently appended first."""

        start = parse_optional_datetime(start_date)
        end = parse_optional_datetime(end_date)
        limit = max(1, min(int(limit), MAX_LIST_LIMIT))

        selected = []
        for snapshot in reversed(await self._all_snapshots()):
            if snapshot.program_id != program_id:
                continue
            if start and snapshot.snapshot_date < start:
                continue
            if end and snapshot.snapshot_date > end:
                continue
            selected.append(snapshot)
            if len(selected) >= limit:
                break
        return selected

    @wraps_errors("get latest EVM snapshot")
    async def get_latest_snapshot(self, program_id: str) -> Optional[EVMSnapshot]:
        for snapshot in reversed(await self._all_snapshots()):
            if snapshot.program_id == program_id:
                return snapshot
        return None

    @wraps_errors("get EVM snapshot history")
    async def get_snapshot_history(self, program_id: str, period_months: int = 12) -> List[EVMSnapshot]:
        """Snapshots dated within the last ``period_months``, in append order."""

        now = utcnow()
        window_start = add_months(now, -period_months)
        return [
            snapshot
            for snapshot in await self._all_snapshots()
            if snapshot.program_id == program_id and window_start <= snapshot.snapshot_date <= now
        ]

    @wraps_errors("delete EVM snapshot")
    async def delete_snapshot(self, snapshot_id: str) -> bool:
        match = await self.store.find_record(SNAPSHOT_SCHEMA, snapshot_id)
        if match is None:
            return False
        await self.store.delete_row(SNAPSHOT_SCHEMA.sheet, match.row_number)
        LOGGER.info("Deleted EVM snapshot %s", snapshot_id)
        return True
