"""
Progress stream for a single generation.

Owns three background tasks next to the consumer iterating ``events()``:
the pipeline producing events, a heartbeat and the hard deadline. The
deadline runs on its own so a consumer stuck writing to a stalled
transport cannot keep the stream alive. Closing is idempotent; whichever
path gets there first (terminal event, hard timeout or consumer
disconnect) cancels the other tasks and fires the close handler, and
every later path waits for that close to finish.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable

from tripweaver.errors import ErrorCode, GenerationError
from tripweaver.streaming.events import EventType, StreamEvent
from tripweaver.streaming.sse import format_sse_event

logger = logging.getLogger(__name__)

Pipeline = Callable[["ProgressStream"], Awaitable[None]]
CloseHandler = Callable[[str], Any]
OpenHandler = Callable[[], Any]


class StreamState(str, Enum):
    """Progress stream states."""

    OPEN = "open"
    STREAMING = "streaming"
    CLOSED = "closed"


class ProgressStream:
    """
    Cancellable, heartbeat-guarded, timeout-bounded event stream.

    Guarantees:
    - ``start`` is the first event delivered.
    - At most one terminal event (``complete`` or ``error``), always last.
    - No event, heartbeat included, is queued after close.
    - At most one heartbeat is pending at a time.
    - The close handler runs exactly once.
    """

    def __init__(
        self,
        pipeline: Pipeline,
        heartbeat_interval: float = 30.0,
        timeout: float = 300.0,
        on_close: CloseHandler | None = None,
        on_open: OpenHandler | None = None,
        stream_id: str | None = None,
        start_message: str = "Starting itinerary generation...",
    ) -> None:
        """
        Initialize the stream.

        Args:
            pipeline: Coroutine function emitting events on this stream
            heartbeat_interval: Seconds between heartbeats
            timeout: Hard limit on the stream's lifetime in seconds
            on_close: Called once with the close reason (sync or async)
            on_open: Called once when consumption starts
            stream_id: Identifier for logs
            start_message: Message carried by the ``start`` event
        """
        if heartbeat_interval <= 0:
            raise ValueError("heartbeat_interval must be positive")
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        self.stream_id = stream_id or uuid.uuid4().hex[:12]
        self._pipeline = pipeline
        self._heartbeat_interval = heartbeat_interval
        self._timeout = timeout
        self._on_close = on_close
        self._on_open = on_open
        self._start_message = start_message

        # None wakes the consumer once the stream is closed
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        self._state = StreamState.OPEN
        self._terminal_sent = False
        self._closed = False
        self._close_reason: str | None = None
        self._producer_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._deadline_task: asyncio.Task | None = None
        self._close_done = asyncio.Event()
        self._heartbeat_pending = False
        self._emitted = 0

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def close_reason(self) -> str | None:
        return self._close_reason

    @property
    def terminal_sent(self) -> bool:
        return self._terminal_sent

    # --- Producer side ---

    def emit(self, event: StreamEvent) -> bool:
        """
        Queue an event for delivery.

        Returns:
            False if the stream is closed or already has a terminal event
        """
        if self._closed or self._terminal_sent:
            return False
        if event.is_terminal:
            self._terminal_sent = True
        self._queue.put_nowait(event)
        self._emitted += 1
        return True

    def fail(self, error: GenerationError) -> bool:
        """Queue a terminal error event."""
        return self.emit(StreamEvent.error(error))

    async def _run_pipeline(self) -> None:
        try:
            await self._pipeline(self)
        except asyncio.CancelledError:
            raise
        except GenerationError as e:
            self.fail(e)
        except Exception as e:
            logger.exception(f"[stream {self.stream_id}] Pipeline crashed")
            self.fail(GenerationError(ErrorCode.INTERNAL_ERROR, f"Unexpected error: {e}"))
        else:
            if not self._terminal_sent:
                self.fail(
                    GenerationError(ErrorCode.INTERNAL_ERROR, "Generation ended without a result")
                )

    async def _heartbeat_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self._heartbeat_interval)
            if self._heartbeat_pending:
                continue
            if not self.emit(StreamEvent.heartbeat()):
                break
            self._heartbeat_pending = True

    async def _enforce_deadline(self) -> None:
        await asyncio.sleep(self._timeout)
        if self._closed:
            return
        logger.warning(f"[stream {self.stream_id}] Timed out after {self._timeout:.0f}s")
        self.fail(
            GenerationError(
                ErrorCode.TIMEOUT,
                "Generation timed out. Please try again.",
                {"timeout_seconds": self._timeout},
            )
        )
        await self.close("timeout")

    # --- Consumer side ---

    async def events(self) -> AsyncIterator[StreamEvent]:
        """
        Run the pipeline and yield its events until the terminal one.

        Leaving the iteration early (consumer disconnect) closes the
        stream and cancels the pipeline. After a timeout close the
        events already queued, the timeout error included, can still
        be drained.
        """
        if self._state != StreamState.OPEN:
            raise RuntimeError("ProgressStream can only be consumed once")

        self._state = StreamState.STREAMING
        reason = "disconnected"
        if self._on_open is not None:
            self._on_open()

        self.emit(StreamEvent.start(self._start_message))
        self._producer_task = asyncio.create_task(self._run_pipeline())
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        self._deadline_task = asyncio.create_task(self._enforce_deadline())

        try:
            while True:
                event = await self._queue.get()
                if event is None:
                    break
                if event.type == EventType.HEARTBEAT:
                    self._heartbeat_pending = False

                yield event
                if event.is_terminal:
                    reason = "complete" if event.type == EventType.COMPLETE else "error"
                    break
        finally:
            await self.close(reason)

    async def sse(self) -> AsyncIterator[str]:
        """Events formatted as SSE messages."""
        events = self.events()
        try:
            async for event in events:
                yield format_sse_event(event.to_dict())
        finally:
            await events.aclose()

    # --- Teardown ---

    async def close(self, reason: str = "closed") -> None:
        """
        Close the stream. Safe to call any number of times.

        A call made while another close is in progress returns once
        that close has finished.

        Args:
            reason: Recorded and passed to the close handler
        """
        if self._closed:
            await self._close_done.wait()
            return
        self._closed = True
        self._state = StreamState.CLOSED
        self._close_reason = reason
        self._queue.put_nowait(None)

        try:
            current = asyncio.current_task()
            tasks = [
                t for t in (self._heartbeat_task, self._deadline_task, self._producer_task)
                if t is not None and not t.done() and t is not current
            ]
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)

            logger.debug(f"[stream {self.stream_id}] Closed ({reason}) after {self._emitted} events")

            if self._on_close is not None:
                try:
                    outcome = self._on_close(reason)
                    if inspect.isawaitable(outcome):
                        await outcome
                except Exception as e:
                    logger.error(f"[stream {self.stream_id}] Close handler failed: {e}")
        finally:
            self._close_done.set()
