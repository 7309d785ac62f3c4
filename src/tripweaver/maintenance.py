"""Data pruning jobs for usage counters and generation records."""

import logging
from datetime import datetime, timedelta
from typing import Any

from tripweaver.db.manager import DatabaseManager
from tripweaver.db.models import GenerationRecord, UsageCounter

logger = logging.getLogger(__name__)


class UsagePruner:
    """
    Deletes accounting data that no longer affects any decision.

    A usage counter is only consulted during its own window, so it is
    safe to drop once the window has ended; the retention period keeps
    recent history around for support queries.
    """

    def __init__(
        self,
        db_manager: DatabaseManager | None = None,
        usage_retention_days: int = 90,
        record_retention_days: int = 365,
    ) -> None:
        """
        Initialize the pruner.

        Args:
            db_manager: Database manager instance
            usage_retention_days: Days to keep counters after their window ends
            record_retention_days: Days to keep generation records
        """
        self._db_manager = db_manager
        self._usage_retention_days = usage_retention_days
        self._record_retention_days = record_retention_days

    def set_db_manager(self, db_manager: DatabaseManager) -> None:
        """Set database manager (for deferred initialization)."""
        self._db_manager = db_manager

    def prune_usage_counters(self, now: datetime | None = None) -> int:
        """
        Delete counters whose window ended before the retention cutoff.

        Returns:
            Number of deleted rows
        """
        if self._db_manager is None:
            logger.error("UsagePruner: No database manager configured")
            return 0

        cutoff = (now or datetime.utcnow()) - timedelta(days=self._usage_retention_days)

        with self._db_manager.get_session() as session:
            count = (
                session.query(UsageCounter)
                .filter(UsageCounter.period_end < cutoff)
                .delete(synchronize_session=False)
            )

        if count:
            logger.info(f"Pruned {count} usage counters ended before {cutoff:%Y-%m-%d}")
        else:
            logger.debug("No usage counters to prune")
        return count

    def prune_generation_records(self, now: datetime | None = None) -> int:
        """
        Delete generation records older than the retention period.

        Returns:
            Number of deleted rows
        """
        if self._db_manager is None:
            logger.error("UsagePruner: No database manager configured")
            return 0

        cutoff = (now or datetime.utcnow()) - timedelta(days=self._record_retention_days)

        with self._db_manager.get_session() as session:
            count = (
                session.query(GenerationRecord)
                .filter(GenerationRecord.created_at < cutoff)
                .delete(synchronize_session=False)
            )

        if count:
            logger.info(f"Pruned {count} generation records older than {self._record_retention_days} days")
        return count

    def run_all(self, now: datetime | None = None) -> dict[str, int]:
        """
        Run all pruning tasks.

        Returns:
            Dict with counts for each pruning operation
        """
        return {
            "usage_counters_pruned": self.prune_usage_counters(now),
            "generation_records_pruned": self.prune_generation_records(now),
        }


def run_pruning(
    database_url: str,
    usage_retention_days: int,
    record_retention_days: int,
) -> dict[str, Any]:
    """
    Scheduled entry point.

    Module-level so the persistent job store can reference it by name.
    """
    db_manager = DatabaseManager(database_url)
    try:
        pruner = UsagePruner(db_manager, usage_retention_days, record_retention_days)
        return pruner.run_all()
    except Exception as e:
        logger.error(f"Pruning job failed: {e}")
        raise
    finally:
        db_manager.close()
