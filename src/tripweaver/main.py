"""Main entry point for the Tripweaver service."""

import logging
import sys
from typing import NoReturn

import uvicorn

from tripweaver.config import settings
from tripweaver.scheduler import PRUNING_JOB_ID, SchedulerService

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class Tripweaver:
    """Runs the API server alongside the maintenance scheduler."""

    def __init__(self) -> None:
        self.scheduler = SchedulerService(
            database_url=settings.scheduler_database_url,
            max_workers=settings.scheduler_max_workers,
            timezone=settings.scheduler_timezone,
        )

    def start(self) -> None:
        """Start background services."""
        logger.info("Starting Tripweaver...")
        settings.data_dir.mkdir(parents=True, exist_ok=True)

        # Counters and records are pruned daily; nothing to do at startup
        self.scheduler.schedule_pruning(settings, run_immediately=False)
        self.scheduler.start()

        next_run = self.scheduler.next_run_time(PRUNING_JOB_ID)
        logger.info(
            f"Pruning every {settings.pruning_interval_minutes}m, next run at "
            f"{next_run.isoformat() if next_run else 'not scheduled'}"
        )

    def serve(self) -> None:
        """Run the API server until it is interrupted."""
        from tripweaver.api.app import app

        uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())

    def stop(self) -> None:
        """Stop all services gracefully."""
        logger.info("Stopping Tripweaver...")
        self.scheduler.shutdown(wait=True)
        logger.info("Tripweaver stopped")


def main() -> NoReturn:
    """Main entry point."""
    service = Tripweaver()
    try:
        service.start()
        # uvicorn installs its own SIGINT/SIGTERM handlers
        service.serve()
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()

    sys.exit(0)


if __name__ == "__main__":
    main()
