"""
Workflow Scheduler Module
Cron and interval triggers, next run calculation and due job execution
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from .dates import parse_optional_datetime, to_utc, utcnow

LOGGER = logging.getLogger(__name__)

INTERVAL_UNITS = {
    "minutes": timedelta(minutes=1),
    "hours": timedelta(hours=1),
    "days": timedelta(days=1),
    "weeks": timedelta(weeks=1),
}

# (name, lowest, highest)
CRON_FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day", 1, 31),
    ("month", 1, 12),
    ("weekday", 0, 7),
)

SEARCH_HORIZON = timedelta(days=366)


@dataclass
class ScheduleTrigger:
    """Either a 5-field ``cron`` expression or ``interval_value`` + ``interval_unit``."""

    cron: Optional[str] = None
    interval_value: Optional[int] = None
    interval_unit: Optional[str] = None
    start_date: Any = None
    end_date: Any = None

    def __post_init__(self) -> None:
        if bool(self.cron) == (self.interval_value is not None):
            raise ValueError("A trigger needs exactly one of cron or interval")
        if self.cron:
            parse_cron(self.cron)
        else:
            if self.interval_unit not in INTERVAL_UNITS:
                raise ValueError(f"Unknown interval unit: {self.interval_unit}")
            if self.interval_value is None or self.interval_value <= 0:
                raise ValueError("Interval value must be positive")
        self.start_date = parse_optional_datetime(self.start_date)
        self.end_date = parse_optional_datetime(self.end_date)


@dataclass(frozen=True)
class CronSchedule:
    minutes: FrozenSet[int]
    hours: FrozenSet[int]
    days: FrozenSet[int]
    months: FrozenSet[int]
    weekdays: FrozenSet[int]

    def matches_day(self, value: datetime) -> bool:
        # cron counts weekdays from Sunday = 0
        weekday = (value.weekday() + 1) % 7
        return value.month in self.months and value.day in self.days and weekday in self.weekdays

    def matches(self, value: datetime) -> bool:
        return self.matches_day(value) and value.hour in self.hours and value.minute in self.minutes


def _parse_field(expr: str, name: str, lowest: int, highest: int) -> FrozenSet[int]:
    values = set()
    for part in expr.split(","):
        if part == "*":
            values.update(range(lowest, highest + 1))
        elif part.startswith("*/"):
            step = part[2:]
            if not step.isdigit() or int(step) == 0:
                raise ValueError(f"Invalid step '{part}' in cron {name} field")
            values.update(range(lowest, highest + 1, int(step)))
        elif "-" in part:
            start, _, end = part.partition("-")
            if not (start.isdigit() and end.isdigit()) or int(start) > int(end):
                raise ValueError(f"Invalid range '{part}' in cron {name} field")
            values.update(range(int(start), int(end) + 1))
        elif part.isdigit():
            values.add(int(part))
        else:
            raise ValueError(f"Invalid value '{part}' in cron {name} field")

    if any(value < lowest or value > highest for value in values):
        raise ValueError(f"Cron {name} field out of range {lowest}-{highest}: {expr}")
    return frozenset(values)


def parse_cron(expr: str) -> CronSchedule:
    """
    Parse ``minute hour day month weekday``

    Each field accepts ``*``, ``n``, ``a,b``, ``a-b`` and ``*/n``. Weekdays
    count from Sunday = 0; 7 is also Sunday.

    Raises:
        ValueError: for any other shape
    """
    parts = expr.split()
    if len(parts) != 5:
        raise ValueError(f"Invalid cron expression: {expr}. Expected format: minute hour day month weekday")
    parsed = [_parse_field(part, *spec) for part, spec in zip(parts, CRON_FIELDS)]
    weekdays = frozenset(0 if day == 7 else day for day in parsed[4])
    return CronSchedule(parsed[0], parsed[1], parsed[2], parsed[3], weekdays)


def _next_cron_time(schedule: CronSchedule, after: datetime, expr: str) -> datetime:
    candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    limit = after + SEARCH_HORIZON
    while candidate <= limit:
        if not schedule.matches_day(candidate):
            candidate = (candidate + timedelta(days=1)).replace(hour=0, minute=0)
        elif candidate.hour not in schedule.hours:
            candidate = (candidate + timedelta(hours=1)).replace(minute=0)
        elif candidate.minute not in schedule.minutes:
            candidate += timedelta(minutes=1)
        else:
            return candidate
    raise ValueError(f"Could not calculate next run for cron: {expr}")


def calculate_next_run(trigger: ScheduleTrigger, from_time: Optional[datetime] = None) -> Optional[datetime]:
    """
    Next time ``trigger`` fires strictly after ``from_time``

    Returns:
        The next run, or None once it would fall after the trigger's end date

    Raises:
        ValueError: if a cron expression has no match within a year
    """
    now = to_utc(from_time) if from_time else utcnow()
    start = trigger.start_date

    if trigger.cron:
        base = now
        if start and start > now:
            base = start - timedelta(minutes=1)
        next_run = _next_cron_time(parse_cron(trigger.cron), base, trigger.cron)
    else:
        if start and start > now:
            next_run = start
        else:
            next_run = now + INTERVAL_UNITS[trigger.interval_unit] * trigger.interval_value

    if trigger.end_date and next_run > trigger.end_date:
        return None
    return next_run


@dataclass
class WorkflowSchedule:
    workflow_id: str
    trigger: ScheduleTrigger
    job: Callable[..., Any]
    enabled: bool = True
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    run_count: int = 0
    last_error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def schedule_id(self) -> str:
        return f"sched-{self.workflow_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schedule_id": self.schedule_id,
            "workflow_id": self.workflow_id,
            "enabled": self.enabled,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "run_count": self.run_count,
            "last_error": self.last_error,
        }


class WorkflowScheduler:
    """Keeps workflow schedules and runs the ones that are due.

    Nothing runs on its own: call :meth:`run_pending` periodically.
    """

    def __init__(self) -> None:
        self._schedules: Dict[str, WorkflowSchedule] = {}

    def schedule_workflow(
        self,
        workflow_id: str,
        trigger: ScheduleTrigger,
        job: Callable[..., Any],
        enabled: bool = True,
    ) -> WorkflowSchedule:
        schedule = WorkflowSchedule(workflow_id=workflow_id, trigger=trigger, job=job, enabled=enabled)
        schedule.next_run = calculate_next_run(trigger)
        self._schedules[workflow_id] = schedule
        LOGGER.info("Scheduled workflow %s, next run %s", workflow_id, schedule.next_run)
        return schedule

    def unschedule_workflow(self, workflow_id: str) -> bool:
        return self._schedules.pop(workflow_id, None) is not None

    def enable_schedule(self, workflow_id: str) -> None:
        schedule = self._schedules.get(workflow_id)
        if schedule is None:
            raise KeyError(f"No schedule found for workflow {workflow_id}")
        schedule.enabled = True
        schedule.next_run = calculate_next_run(schedule.trigger)

    def disable_schedule(self, workflow_id: str) -> None:
        schedule = self._schedules.get(workflow_id)
        if schedule is not None:
            schedule.enabled = False

    def get_schedule(self, workflow_id: str) -> Optional[WorkflowSchedule]:
        return self._schedules.get(workflow_id)

    def list_schedules(self) -> List[WorkflowSchedule]:
        return list(self._schedules.values())

    async def _execute(self, schedule: WorkflowSchedule, now: datetime) -> Tuple[str, Optional[str]]:
        schedule.last_run = now
        schedule.run_count += 1
        context = {"scheduled_run": True, "schedule_id": schedule.schedule_id, "run_count": schedule.run_count}
        error = None
        try:
            result = schedule.job(context)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            error = str(exc)
            LOGGER.error(
                "Error executing scheduled workflow %s (run %d, scheduled for %s): %s",
                schedule.workflow_id,
                schedule.run_count,
                schedule.next_run,
                exc,
            )
        schedule.last_error = error
        schedule.next_run = calculate_next_run(schedule.trigger, now)
        return schedule.workflow_id, error

    async def run_pending(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Run every enabled workflow whose next run is due

        Returns:
            One ``{"workflow_id", "status", "error"}`` entry per executed workflow
        """
        now = to_utc(now) if now else utcnow()
        due = [
            schedule
            for schedule in self._schedules.values()
            if schedule.enabled and schedule.next_run is not None and schedule.next_run <= now
        ]
        runs = []
        for schedule in due:
            workflow_id, error = await self._execute(schedule, now)
            runs.append({"workflow_id": workflow_id, "status": "error" if error else "success", "error": error})
        if runs:
            LOGGER.info("Ran %d scheduled workflow(s)", len(runs))
        return runs

    def get_upcoming_runs(self, limit: int = 10) -> List[Dict[str, Any]]:
        upcoming = sorted(
            (s for s in self._schedules.values() if s.enabled and s.next_run is not None),
            key=lambda s: s.next_run,
        )
        return [{"workflow_id": s.workflow_id, "next_run": s.next_run} for s in upcoming[:limit]]

    def clear_all(self) -> None:
        self._schedules.clear()
