"""Periodic job scheduling on the asyncio loop."""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger


logger = structlog.get_logger(__name__)


class JobScheduler:
    """Manages the monitoring drivers using APScheduler."""

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.running = False

    def start(self):
        """Start the job scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.start()
        self.running = True
        logger.info("Job scheduler started")

    def stop(self):
        """Stop the job scheduler without waiting for in-flight cycles."""
        if not self.running:
            return

        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Job scheduler stopped")

    def add_interval_job(
        self,
        job_id: str,
        func: Callable,
        seconds: int,
        run_immediately: bool = True,
        description: Optional[str] = None,
    ):
        """Add an interval job, optionally firing once right away."""
        if job_id in self.jobs:
            logger.warning("Job already exists, replacing", job_id=job_id)
            self.remove_job(job_id)

        trigger = IntervalTrigger(seconds=seconds, timezone=timezone.utc)
        extra: Dict[str, Any] = {}
        if run_immediately:
            extra["next_run_time"] = datetime.now(timezone.utc)

        # Overlap is decided by the cycle guard, so let APScheduler hand every tick over.
        job = self.scheduler.add_job(
            func=func,
            trigger=trigger,
            id=job_id,
            name=description or job_id,
            max_instances=2,
            coalesce=True,
            misfire_grace_time=None,
            **extra,
        )

        self.jobs[job_id] = {
            "job": job,
            "seconds": seconds,
            "description": description,
            "added_at": datetime.now(timezone.utc),
        }

        logger.info("Added interval job", job_id=job_id, interval_seconds=seconds, description=description)

    def remove_job(self, job_id: str) -> bool:
        """Remove a scheduled job."""
        if job_id not in self.jobs:
            logger.warning("Job not found", job_id=job_id)
            return False

        self.scheduler.remove_job(job_id)
        del self.jobs[job_id]
        logger.info("Removed job", job_id=job_id)
        return True

    def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Get status information for a job."""
        if job_id not in self.jobs:
            return None

        job_info = self.jobs[job_id]
        scheduler_job = self.scheduler.get_job(job_id)
        if scheduler_job is None:
            return None

        next_run = getattr(scheduler_job, "next_run_time", None)
        return {
            "job_id": job_id,
            "name": scheduler_job.name,
            "interval_seconds": job_info["seconds"],
            "next_run": next_run.isoformat() if next_run else None,
            "added_at": job_info["added_at"].isoformat(),
            "description": job_info.get("description"),
        }

    def list_jobs(self) -> List[Dict[str, Any]]:
        """List all scheduled jobs."""
        return [status for status in (self.get_job_status(job_id) for job_id in self.jobs) if status]
