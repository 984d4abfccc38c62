"""
Workflow scheduling
Deterministic next-run calculation with fixed clocks
"""

from datetime import datetime, timedelta, timezone

import pytest
from freezegun import freeze_time

from pmo_financial.scheduler import (
    ScheduleTrigger,
    WorkflowScheduler,
    calculate_next_run,
    parse_cron,
)


def at(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestCronParsing:
    """Five-field cron expressions"""

    def test_steps_ranges_and_lists(self):
        cron = parse_cron("*/15 9-17 1,15 * 1-5")
        assert cron.minutes == frozenset({0, 15, 30, 45})
        assert cron.hours == frozenset(range(9, 18))
        assert cron.days == frozenset({1, 15})
        assert cron.months == frozenset(range(1, 13))
        assert cron.weekdays == frozenset({1, 2, 3, 4, 5})

    def test_weekday_seven_is_sunday(self):
        assert parse_cron("0 0 * * 7").weekdays == frozenset({0})

    @pytest.mark.parametrize(
        "expr,message",
        [
            ("* * *", "Expected format: minute hour day month weekday"),
            ("60 * * * *", "out of range"),
            ("*/0 * * * *", "Invalid step"),
            ("5-1 * * * *", "Invalid range"),
            ("mon * * * *", "Invalid value"),
        ],
    )
    def test_invalid_expressions(self, expr, message):
        with pytest.raises(ValueError, match=message):
            parse_cron(expr)


class TestTriggers:
    def test_exactly_one_kind(self):
        with pytest.raises(ValueError, match="exactly one"):
            ScheduleTrigger()
        with pytest.raises(ValueError, match="exactly one"):
            ScheduleTrigger(cron="0 9 * * *", interval_value=1, interval_unit="hours")

    def test_interval_validation(self):
        with pytest.raises(ValueError, match="Unknown interval unit"):
            ScheduleTrigger(interval_value=1, interval_unit="fortnights")
        with pytest.raises(ValueError, match="must be positive"):
            ScheduleTrigger(interval_value=0, interval_unit="days")

    def test_dates_are_parsed(self):
        trigger = ScheduleTrigger(cron="0 9 * * *", start_date="2024-02-01", end_date="2024-03-01T00:00:00Z")
        assert trigger.start_date == at(2024, 2, 1)
        assert trigger.end_date == at(2024, 3, 1)


class TestNextRun:
    """Next run strictly after the reference time"""

    def test_weekly_cron(self):
        trigger = ScheduleTrigger(cron="0 9 * * 1")
        # 2024-01-15 is a Monday
        assert calculate_next_run(trigger, at(2024, 1, 15, 8, 5)) == at(2024, 1, 15, 9, 0)
        assert calculate_next_run(trigger, at(2024, 1, 15, 9, 0)) == at(2024, 1, 22, 9, 0)

    def test_month_rollover(self):
        trigger = ScheduleTrigger(cron="30 6 1 * *")
        assert calculate_next_run(trigger, at(2024, 12, 20, 12, 0)) == at(2025, 1, 1, 6, 30)

    def test_cron_waits_for_start_date(self):
        trigger = ScheduleTrigger(cron="0 9 * * *", start_date="2024-02-01T09:00:00Z")
        assert calculate_next_run(trigger, at(2024, 1, 15)) == at(2024, 2, 1, 9, 0)

    def test_impossible_cron(self):
        trigger = ScheduleTrigger(cron="0 0 30 2 *")
        with pytest.raises(ValueError, match="Could not calculate next run"):
            calculate_next_run(trigger, at(2024, 1, 1))

    def test_interval(self):
        trigger = ScheduleTrigger(interval_value=2, interval_unit="hours")
        assert calculate_next_run(trigger, at(2024, 1, 15, 8, 5)) == at(2024, 1, 15, 10, 5)

    def test_interval_with_future_start(self):
        trigger = ScheduleTrigger(interval_value=1, interval_unit="days", start_date="2024-03-01")
        assert calculate_next_run(trigger, at(2024, 1, 15)) == at(2024, 3, 1)

    def test_nothing_after_end_date(self):
        trigger = ScheduleTrigger(interval_value=1, interval_unit="days", end_date="2024-01-15T20:00:00Z")
        assert calculate_next_run(trigger, at(2024, 1, 15, 8, 0)) is None

    @freeze_time("2024-01-15 08:05:00")
    def test_defaults_to_now(self):
        assert calculate_next_run(ScheduleTrigger(interval_value=30, interval_unit="minutes")) == at(2024, 1, 15, 8, 35)


class TestWorkflowScheduler:
    @pytest.fixture
    def scheduler(self):
        return WorkflowScheduler()

    @freeze_time("2024-01-15 08:05:00")
    def test_schedule_and_upcoming(self, scheduler):
        scheduler.schedule_workflow("daily-report", ScheduleTrigger(cron="0 9 * * *"), lambda ctx: None)
        scheduler.schedule_workflow("sync", ScheduleTrigger(interval_value=15, interval_unit="minutes"), lambda ctx: None)
        scheduler.schedule_workflow("paused", ScheduleTrigger(cron="0 8 * * *"), lambda ctx: None, enabled=False)

        upcoming = scheduler.get_upcoming_runs()
        assert [run["workflow_id"] for run in upcoming] == ["sync", "daily-report"]
        assert upcoming[0]["next_run"] == at(2024, 1, 15, 8, 20)
        assert len(scheduler.get_upcoming_runs(limit=1)) == 1
        assert scheduler.get_schedule("daily-report").to_dict()["schedule_id"] == "sched-daily-report"

    @freeze_time("2024-01-15 08:05:00")
    def test_enable_disable_unschedule(self, scheduler):
        scheduler.schedule_workflow("daily-report", ScheduleTrigger(cron="0 9 * * *"), lambda ctx: None)

        scheduler.disable_schedule("daily-report")
        assert scheduler.get_upcoming_runs() == []
        scheduler.enable_schedule("daily-report")
        assert scheduler.get_schedule("daily-report").enabled is True

        with pytest.raises(KeyError):
            scheduler.enable_schedule("missing")
        assert scheduler.unschedule_workflow("daily-report") is True
        assert scheduler.unschedule_workflow("daily-report") is False
        assert scheduler.list_schedules() == []

    @pytest.mark.asyncio
    async def test_run_pending(self, scheduler):
        contexts = []
        ran_async = []

        async def async_job(context):
            ran_async.append(context["run_count"])

        def failing_job(context):
            raise RuntimeError("sheet unavailable")

        with freeze_time("2024-01-15 08:05:00"):
            scheduler.schedule_workflow("daily-report", ScheduleTrigger(cron="0 9 * * *"), contexts.append)
            scheduler.schedule_workflow("sync", ScheduleTrigger(interval_value=1, interval_unit="hours"), async_job)
            scheduler.schedule_workflow("broken", ScheduleTrigger(cron="0 9 * * *"), failing_job)

        assert await scheduler.run_pending(at(2024, 1, 15, 8, 30)) == []

        runs = await scheduler.run_pending(at(2024, 1, 15, 9, 10))

        assert {run["workflow_id"]: run["status"] for run in runs} == {
            "daily-report": "success",
            "sync": "success",
            "broken": "error",
        }
        assert contexts == [{"scheduled_run": True, "schedule_id": "sched-daily-report", "run_count": 1}]
        assert ran_async == [1]

        broken = scheduler.get_schedule("broken")
        assert broken.last_error == "sheet unavailable"
        assert broken.next_run == at(2024, 1, 16, 9, 0)
        assert scheduler.get_schedule("sync").next_run == at(2024, 1, 15, 10, 10)

    @pytest.mark.asyncio
    async def test_disabled_schedules_do_not_run(self, scheduler):
        with freeze_time("2024-01-15 08:05:00"):
            scheduler.schedule_workflow("paused", ScheduleTrigger(cron="0 9 * * *"), lambda ctx: None, enabled=False)

        assert await scheduler.run_pending(at(2024, 1, 15, 9, 30)) == []
        assert scheduler.get_schedule("paused").run_count == 0

    @pytest.mark.asyncio
    async def test_finished_schedules_stop(self, scheduler):
        trigger = ScheduleTrigger(interval_value=1, interval_unit="hours", end_date="2024-01-15T09:30:00Z")
        with freeze_time("2024-01-15 08:05:00"):
            scheduler.schedule_workflow("short", trigger, lambda ctx: None)

        await scheduler.run_pending(at(2024, 1, 15, 9, 5))
        assert scheduler.get_schedule("short").next_run is None
        assert await scheduler.run_pending(at(2024, 1, 15, 12, 0)) == []

    def test_clear_all(self, scheduler):
        scheduler.schedule_workflow("sync", ScheduleTrigger(interval_value=1, interval_unit="hours"), lambda ctx: None)
        scheduler.clear_all()
        assert scheduler.list_schedules() == []
