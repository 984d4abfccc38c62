#!/usr/bin/env python3
"""
Snapshot Worker
Takes a daily EVM snapshot of every configured program and ticks the
workflow scheduler
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import schedule

from .config import Settings
from .dates import utcnow
from .services import Services, build_services

logger = logging.getLogger(__name__)


class SnapshotWorker:
    """Runs the periodic jobs on a ``schedule.Scheduler``."""

    def __init__(self, services: Services, scheduler: Optional[schedule.Scheduler] = None):
        self.services = services
        self.settings = services.settings
        self.scheduler = scheduler or schedule.Scheduler()
        self.last_run: Optional[Dict[str, Any]] = None

    def register_jobs(self):
        """Register the daily snapshot job and the one-minute workflow tick."""
        self.scheduler.every().day.at(self.settings.snapshot_time).do(self.run_daily_snapshots)
        self.scheduler.every(1).minutes.do(self.tick_workflows)
        logger.info(
            f"Daily snapshots scheduled at {self.settings.snapshot_time} "
            f"for {len(self.settings.snapshot_program_ids)} program(s)"
        )

    async def snapshot_programs(self, program_ids: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Snapshot each program; a failing program does not stop the others

        Returns:
            Dict with the created snapshot IDs per program and the failures
        """
        program_ids = self.settings.snapshot_program_ids if program_ids is None else program_ids
        created: Dict[str, str] = {}
        failed: List[Dict[str, str]] = []

        for program_id in program_ids:
            try:
                snapshot = await self.services.snapshots.create_snapshot(program_id, created_by="worker")
                created[program_id] = snapshot.snapshot_id
            except Exception as e:
                logger.error(f"Snapshot failed for {program_id}: {str(e)}")
                failed.append({"program_id": program_id, "error": str(e)})

        await self.services.events.drain()
        result = {
            "status": "success" if not failed else "partial" if created else "error",
            "created": created,
            "failed": failed,
            "timestamp": utcnow().isoformat(),
        }
        self.last_run = result
        logger.info(f"Snapshot run finished: {len(created)} created, {len(failed)} failed")
        return result

    def run_daily_snapshots(self) -> Dict[str, Any]:
        logger.info("Running daily EVM snapshots...")
        return asyncio.run(self.snapshot_programs())

    def tick_workflows(self) -> List[Dict[str, Any]]:
        return asyncio.run(self.services.workflows.run_pending())

    def health_check(self) -> Dict[str, Any]:
        """Health check for the worker"""
        return {
            "status": "unhealthy" if self.last_run and self.last_run["status"] == "error" else "healthy",
            "row_store": self.settings.row_store,
            "programs": list(self.settings.snapshot_program_ids),
            "jobs": len(self.scheduler.get_jobs()),
            "scheduled_workflows": len(self.services.workflows.list_schedules()),
            "last_run": self.last_run,
            "timestamp": utcnow().isoformat(),
        }


def main():
    """Main worker loop"""
    settings = Settings.from_environment()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    logger.info("Starting PMO financial snapshot worker")

    worker = SnapshotWorker(build_services(settings))
    worker.register_jobs()

    while True:
        try:
            worker.scheduler.run_pending()
            time.sleep(60)

        except KeyboardInterrupt:
            logger.info("Worker shutting down...")
            break
        except Exception as e:
            logger.error(f"Worker loop error: {str(e)}")
            time.sleep(60)


if __name__ == "__main__":
    main()
