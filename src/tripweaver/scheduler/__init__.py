"""Background maintenance scheduling."""

from tripweaver.scheduler.service import PRUNING_JOB_ID, SchedulerService

__all__ = ["PRUNING_JOB_ID", "SchedulerService"]
