"""Bounded fire-and-forget dispatcher for redirect side effects.

Click-count increments and visit recording must never delay or fail a
redirect. Instead of spawning a task per job, jobs go through a bounded
queue drained by a fixed pool of worker tasks. Under load the queue fills
and new jobs are dropped (logged and counted) rather than piling up.

Flow Diagram — submit()
=======================
::
    ┌─────────────┐
    │  redirect   │
    │  handler    │
    └──────┬──────┘
           ▼
    ┌─────────────┐   full   ┌──────────────┐
    │ put_nowait  │ ───────▶ │ drop + count │
    └──────┬──────┘          └──────────────┘
           ▼
    ┌─────────────┐
    │ asyncio     │
    │ Queue       │
    └──────┬──────┘
           ▼
    ┌─────────────┐   error  ┌──────────────┐
    │ worker N    │ ───────▶ │ log + count  │
    └─────────────┘          └──────────────┘

How to Use
===========
**Step 1 — Start with the application**::
    dispatcher = BackgroundDispatcher(max_size=1000, workers=4)
    await dispatcher.start()

**Step 2 — Submit a job**::
    dispatcher.submit("visit", recorder.record, slug, ip, ua, referrer, 302)

**Step 3 — Shut down**::
    await dispatcher.stop()

Key Behaviours
===============
- submit() never awaits and never raises.
- Jobs carry no ordering guarantee relative to each other.
- Job exceptions are logged and swallowed inside the worker.
- drain() waits until every queued job has finished.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from prometheus_client import Counter

__all__ = ["BackgroundDispatcher"]

logger = logging.getLogger(__name__)

BACKGROUND_JOBS_SUBMITTED_TOTAL = Counter(
    "shortlinks_background_jobs_submitted_total",
    "Background jobs accepted onto the queue",
    ["job"],
)
BACKGROUND_JOBS_COMPLETED_TOTAL = Counter(
    "shortlinks_background_jobs_completed_total",
    "Background jobs that finished without raising",
    ["job"],
)
BACKGROUND_JOBS_FAILED_TOTAL = Counter(
    "shortlinks_background_jobs_failed_total",
    "Background jobs that raised and were discarded",
    ["job"],
)
BACKGROUND_JOBS_DROPPED_TOTAL = Counter(
    "shortlinks_background_jobs_dropped_total",
    "Background jobs dropped because the queue was full or stopped",
    ["job"],
)

Job = tuple[str, Callable[..., Awaitable[Any]], tuple[Any, ...]]


class BackgroundDispatcher:
    def __init__(self, max_size: int = 1000, workers: int = 4) -> None:
        assert max_size > 0, f"max_size must be positive, got {max_size!r}"
        assert workers > 0, f"workers must be positive, got {workers!r}"
        self._max_size = max_size
        self._worker_count = workers
        self._queue: asyncio.Queue[Job] | None = None
        self._workers: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self._max_size)
        self._workers = [
            asyncio.create_task(self._run_worker(index), name=f"background-worker-{index}")
            for index in range(self._worker_count)
        ]
        logger.info(f"Background dispatcher started with {self._worker_count} workers")

    def submit(self, name: str, func: Callable[..., Awaitable[Any]], *args: Any) -> bool:
        if self._queue is None or not self.running:
            BACKGROUND_JOBS_DROPPED_TOTAL.labels(job=name).inc()
            logger.warning(f"Background dispatcher not running, dropping job: {name}")
            return False
        try:
            self._queue.put_nowait((name, func, args))
        except asyncio.QueueFull:
            BACKGROUND_JOBS_DROPPED_TOTAL.labels(job=name).inc()
            logger.warning(f"Background queue full ({self._max_size}), dropping job: {name}")
            return False
        BACKGROUND_JOBS_SUBMITTED_TOTAL.labels(job=name).inc()
        return True

    async def drain(self) -> None:
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, timeout: float | None = 10.0) -> None:
        """Drain queued jobs for up to ``timeout`` seconds, then cancel the workers."""
        if not self.running:
            return
        try:
            await asyncio.wait_for(self.drain(), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Background drain timed out after {timeout}s, abandoning {self.pending} queued jobs")
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        logger.info("Background dispatcher stopped")

    async def _run_worker(self, index: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            name, func, args = await queue.get()
            try:
                await func(*args)
                BACKGROUND_JOBS_COMPLETED_TOTAL.labels(job=name).inc()
            except asyncio.CancelledError:
                raise
            except Exception:
                BACKGROUND_JOBS_FAILED_TOTAL.labels(job=name).inc()
                logger.exception(f"Background job '{name}' failed in worker {index}")
            finally:
                queue.task_done()
