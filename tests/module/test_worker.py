"""
Snapshot worker jobs
"""

from datetime import timedelta

import pytest
import schedule

from pmo_financial.dates import utcnow
from pmo_financial.scheduler import ScheduleTrigger
from pmo_financial.worker import SnapshotWorker


@pytest.fixture
def worker(services):
    return SnapshotWorker(services, scheduler=schedule.Scheduler())


class TestSnapshotWorker:
    """Daily snapshot run and workflow tick"""

    def test_register_jobs(self, worker):
        worker.register_jobs()
        assert len(worker.scheduler.get_jobs()) == 2
        assert worker.health_check()["jobs"] == 2

    @pytest.mark.asyncio
    async def test_snapshot_configured_programs(self, worker, services, seed_budget, seed_deliverable):
        seed_budget("BUD-001", allocated=100000, spent=40000)
        seed_deliverable("D-001", 100000, 50)

        result = await worker.snapshot_programs()

        assert result["status"] == "success"
        assert result["created"] == {"PRG-001": "SNAP-001"}
        assert result["failed"] == []
        latest = await services.snapshots.get_latest_snapshot("PRG-001")
        assert latest.ac == 40000
        assert latest.calculated_by == "worker"

    @pytest.mark.asyncio
    async def test_one_failing_program_does_not_stop_the_run(self, worker, services, monkeypatch):
        original = services.snapshots.create_snapshot

        async def flaky(program_id, **kwargs):
            if program_id == "PRG-002":
                raise RuntimeError("sheet unavailable")
            return await original(program_id, **kwargs)

        monkeypatch.setattr(services.snapshots, "create_snapshot", flaky)

        result = await worker.snapshot_programs(["PRG-001", "PRG-002"])

        assert result["status"] == "partial"
        assert list(result["created"]) == ["PRG-001"]
        assert result["failed"] == [{"program_id": "PRG-002", "error": "sheet unavailable"}]

    @pytest.mark.asyncio
    async def test_all_failing_marks_worker_unhealthy(self, worker, services, monkeypatch):
        async def broken(program_id, **kwargs):
            raise RuntimeError("sheet unavailable")

        monkeypatch.setattr(services.snapshots, "create_snapshot", broken)

        result = await worker.snapshot_programs()

        assert result["status"] == "error"
        health = worker.health_check()
        assert health["status"] == "unhealthy"
        assert health["programs"] == ["PRG-001"]
        assert health["last_run"] is result

    def test_daily_job_runs_outside_event_loop(self, worker):
        result = worker.run_daily_snapshots()
        assert result["status"] == "success"
        assert worker.health_check()["status"] == "healthy"

    def test_tick_runs_due_workflows(self, worker, services):
        ran = []
        services.workflows.schedule_workflow(
            "sync", ScheduleTrigger(interval_value=1, interval_unit="minutes"), ran.append
        )
        assert worker.tick_workflows() == []

        services.workflows.get_schedule("sync").next_run = utcnow() - timedelta(seconds=1)
        runs = worker.tick_workflows()

        assert runs == [{"workflow_id": "sync", "status": "success", "error": None}]
        assert ran[0]["schedule_id"] == "sched-sync"
