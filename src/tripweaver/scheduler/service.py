"""APScheduler-based maintenance job service."""

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from tripweaver.config import Settings
from tripweaver.maintenance import run_pruning

logger = logging.getLogger(__name__)

PRUNING_JOB_ID = "usage_pruning"


class SchedulerService:
    """
    Background job scheduler for periodic maintenance.

    Jobs are persisted in a SQLAlchemy job store when a database URL
    is given, so restarts keep their schedule; without one they live
    in memory.
    """

    def __init__(
        self,
        database_url: str | None = "sqlite:///data/scheduler.db",
        max_workers: int = 2,
        timezone: str = "UTC",
    ) -> None:
        """
        Initialize the scheduler service.

        Args:
            database_url: SQLAlchemy URL for job persistence (None = in-memory)
            max_workers: Maximum concurrent jobs
            timezone: Scheduler timezone
        """
        self._database_url = database_url
        self._max_workers = max_workers
        self._timezone = timezone
        self._scheduler: BackgroundScheduler | None = None

    @property
    def scheduler(self) -> BackgroundScheduler:
        """Get or create the scheduler instance."""
        if self._scheduler is None:
            self._scheduler = self._create_scheduler()
        return self._scheduler

    def _create_scheduler(self) -> BackgroundScheduler:
        """Create and configure the APScheduler instance."""
        if self._database_url:
            jobstore: Any = SQLAlchemyJobStore(url=self._database_url)
        else:
            jobstore = MemoryJobStore()

        scheduler = BackgroundScheduler(
            jobstores={"default": jobstore},
            executors={"default": ThreadPoolExecutor(max_workers=self._max_workers)},
            job_defaults={
                "coalesce": True,  # Combine missed runs into one
                "max_instances": 1,  # Prevent overlapping runs
                "misfire_grace_time": 60 * 5,
            },
            timezone=self._timezone,
        )

        logger.info(
            f"Scheduler configured with {self._max_workers} workers, "
            f"timezone={self._timezone}"
        )
        return scheduler

    def start(self) -> None:
        """Start the scheduler."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started")
        else:
            logger.warning("Scheduler is already running")

    def shutdown(self, wait: bool = True) -> None:
        """
        Shutdown the scheduler.

        Args:
            wait: Wait for running jobs to complete
        """
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Scheduler shutdown complete")

    def add_job(
        self,
        job_id: str,
        func: Callable[..., Any],
        interval_minutes: int,
        kwargs: dict[str, Any] | None = None,
        run_immediately: bool = False,
    ) -> None:
        """
        Add an interval-based job, replacing any job with the same id.

        Args:
            job_id: Unique identifier for the job
            func: Module-level function to execute
            interval_minutes: Minutes between runs
            kwargs: Keyword arguments for the function
            run_immediately: Schedule the first run now instead of after one interval
        """
        # Passing next_run_time=None would add the job paused
        extra = {"next_run_time": datetime.now(timezone.utc)} if run_immediately else {}
        self.scheduler.add_job(
            func,
            trigger=IntervalTrigger(minutes=interval_minutes),
            id=job_id,
            name=job_id,
            kwargs=kwargs or {},
            replace_existing=True,
            **extra,
        )
        logger.info(f"Job '{job_id}' added with {interval_minutes}m interval")

    def schedule_pruning(self, settings: Settings, run_immediately: bool = False) -> None:
        """Register the usage and record pruning job."""
        self.add_job(
            PRUNING_JOB_ID,
            run_pruning,
            interval_minutes=settings.pruning_interval_minutes,
            kwargs={
                "database_url": settings.database_url,
                "usage_retention_days": settings.usage_retention_days,
                "record_retention_days": settings.record_retention_days,
            },
            run_immediately=run_immediately,
        )

    def next_run_time(self, job_id: str) -> datetime | None:
        """When a job runs next, or None if it is not scheduled."""
        job = self.scheduler.get_job(job_id)
        return job.next_run_time if job is not None else None

    @property
    def is_running(self) -> bool:
        """Check if the scheduler is running."""
        return self._scheduler is not None and self._scheduler.running
