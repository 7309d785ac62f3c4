"""Fire-and-forget post-generation work."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class BackgroundTaskQueue:
    """
    Runs work that must not delay or fail a finished generation.

    Each submitted job is its own failure domain: exceptions are
    logged and dropped. Pending jobs can be drained at shutdown.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self._completed = 0
        self._failed = 0

    def submit(self, name: str, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        """
        Schedule a job.

        Args:
            name: Label for logs
            factory: Zero-argument callable returning the awaitable to run

        Returns:
            The scheduled task
        """

        async def runner() -> None:
            try:
                await factory()
                self._completed += 1
            except asyncio.CancelledError:
                logger.warning(f"Background job {name} cancelled")
                raise
            except Exception as e:
                self._failed += 1
                logger.error(f"Background job {name} failed: {e}")

        task = asyncio.create_task(runner(), name=f"background:{name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float = 10.0) -> int:
        """
        Wait for pending jobs, cancelling any still running after ``timeout``.

        Returns:
            Number of jobs that had to be cancelled
        """
        if not self._tasks:
            return 0

        tasks = list(self._tasks)
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Cancelled {len(pending)} background jobs at shutdown")
        return len(pending)

    def stats(self) -> dict[str, int]:
        return {
            "pending": self.pending,
            "completed": self._completed,
            "failed": self._failed,
        }
