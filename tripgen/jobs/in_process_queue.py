"""In-process job queue using asyncio.

Runs generation tasks on a fixed number of worker coroutines in the API
process. No external dependencies (Redis, Celery) needed.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from tripgen.jobs.dispatcher import JobDispatcher

logger = logging.getLogger(__name__)

WorkerFn = Callable[[Any], Awaitable[None]]
ErrorHook = Callable[[Any, BaseException], Awaitable[None]]
CancelHook = Callable[[Any], Awaitable[None]]


class InProcessQueue(JobDispatcher):
    """Local async job queue with ``concurrency`` workers."""

    def __init__(
        self,
        worker_fn: WorkerFn,
        on_error: Optional[ErrorHook] = None,
        concurrency: int = 1,
        on_cancel: Optional[CancelHook] = None,
    ):
        """
        worker_fn: async callable(task) that does the work.
        on_error: async callable(task, exc), invoked for any exception that
            escapes worker_fn. Its own failures are logged and dropped.
        on_cancel: async callable(task), invoked by ``stop`` for every task
            that was interrupted mid-run or never picked up.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker_fn = worker_fn
        self._on_error = on_error
        self._on_cancel = on_cancel
        self._concurrency = concurrency
        self._tasks: List[asyncio.Task] = []
        self._in_flight: Dict[int, Any] = {}
        self._running = False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._running

    async def submit(self, task: Any) -> None:
        await self._queue.put(task)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._worker_loop(i), name=f"generation-worker-{i}")
            for i in range(self._concurrency)
        ]
        logger.info("In-process queue started with %d worker(s)", self._concurrency)

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

        abandoned = list(self._in_flight.values())
        self._in_flight.clear()
        while not self._queue.empty():
            abandoned.append(self._queue.get_nowait())
            self._queue.task_done()
        for task in abandoned:
            await self._abandon(task)
        logger.info("In-process queue stopped (%d task(s) abandoned)", len(abandoned))

    async def join(self) -> None:
        """Wait until every queued task has been processed."""
        await self._queue.join()

    async def _worker_loop(self, worker_id: int) -> None:
        """Process tasks from the queue until stopped."""
        while self._running:
            try:
                task = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            # Left in place on cancellation so stop() can abandon it
            self._in_flight[worker_id] = task
            try:
                await self._worker_fn(task)
            except asyncio.CancelledError:
                self._queue.task_done()
                raise
            except Exception as exc:
                logger.exception("Worker %d: task %r failed", worker_id, task)
                await self._report(task, exc)
            self._in_flight.pop(worker_id, None)
            self._queue.task_done()

    async def _report(self, task: Any, exc: BaseException) -> None:
        if self._on_error is None:
            return
        try:
            await self._on_error(task, exc)
        except Exception:
            logger.exception("on_error hook failed for task %r", task)

    async def _abandon(self, task: Any) -> None:
        if self._on_cancel is None:
            logger.warning("Task %r dropped on shutdown", task)
            return
        try:
            await self._on_cancel(task)
        except Exception:
            logger.exception("on_cancel hook failed for task %r", task)
