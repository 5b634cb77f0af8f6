"""
Notification Worker — Pulls due jobs from the delayed queue and dispatches them.

Runs as an async task inside the worker process. For horizontal scaling,
run several processes against the same Redis prefix; claiming is atomic,
so each due job is handed to exactly one of them.

Lifecycle per delivery (each record is a JobLogEvent logged as
"notification_job"):

  started ──▶ handler found? ──no──▶ skipped "unknown category"  (acked)
                  │ yes
                  ▼
              handler(job) ──raises──▶ failed ──▶ re-raised, queue retries
                  │                                   │
                  │ DispatchResult.skipped            │ attempts exhausted
                  ▼                                   ▼
              skipped / completed           job_exhausted_retries (once)
"""
from __future__ import annotations

import asyncio
import time
import structlog
from typing import Any, Awaitable, Callable

from job_queue.message_queue import DelayedQueue, QueueJob
from models.schemas import JobLifecycleStatus, JobLogEvent

logger = structlog.get_logger()

Handler = Callable[[QueueJob], Awaitable[Any]]


class NotificationWorker:
    """
    Consumes due jobs and routes them through a category → handler table.

    Usage:
        worker = NotificationWorker(queue, dispatch_table)
        await worker.start()               # blocks until stop()
        await worker.start_background()    # returns immediately, runs as task
        await worker.stop()
    """

    def __init__(
        self,
        queue: DelayedQueue,
        dispatch_table: dict[str, Handler],
        concurrency: int = 5,
        poll_interval: float = 1.0,
    ):
        self.queue = queue
        self.dispatch_table = dict(dispatch_table)
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self._semaphore = asyncio.Semaphore(concurrency)
        self._tasks: list[asyncio.Task] = []

    async def start(self):
        """Start consuming — blocks until stop() is called."""
        logger.info("notification_worker_starting",
                    concurrency=self.concurrency,
                    categories=len(self.dispatch_table))
        await self.queue.consume(
            handler=self.process,
            on_exhausted=self._on_exhausted,
            batch_size=self.concurrency,
            poll_interval=self.poll_interval,
        )

    async def start_background(self) -> asyncio.Task:
        """Start consuming in a background task. Returns the task handle."""
        task = asyncio.create_task(self.start())
        self._tasks.append(task)
        return task

    async def stop(self, drain: bool = True):
        """Stop polling, let in-flight jobs settle, then cancel the loop task."""
        await self.queue.stop(drain=drain)
        for task in self._tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        logger.info("notification_worker_stopped")

    async def run_due(self, now=None, limit: int = None) -> int:
        """Process every currently-due job once. Used by tests and one-shot runs."""
        return await self.queue.run_once(
            self.process, self._on_exhausted, limit=limit or self.concurrency, now=now,
        )

    # ── Per-job processing ────────────────────────────────────

    def _event(self, job: QueueJob, status: JobLifecycleStatus, **extra) -> JobLogEvent:
        return JobLogEvent(
            job_id=job.job_id,
            category=job.category,
            entity_id=job.entity_id,
            fund_id=job.fund_id,
            family=job.family,
            status=status,
            attempt=job.attempt + 1,
            **extra,
        )

    async def process(self, job: QueueJob):
        """
        Handle one delivery. Returns normally for completed and skipped jobs;
        re-raises handler errors so the queue applies its retry policy.
        """
        async with self._semaphore:
            logger.info("notification_job", **self._event(job, JobLifecycleStatus.STARTED).to_log())

            handler = self.dispatch_table.get(job.category)
            if handler is None:
                logger.info("notification_job", **self._event(
                    job, JobLifecycleStatus.SKIPPED, reason="unknown category",
                ).to_log())
                return None

            started = time.monotonic()
            try:
                result = await handler(job)
            except Exception as e:
                logger.error("notification_job", **self._event(
                    job, JobLifecycleStatus.FAILED,
                    duration_ms=_elapsed_ms(started),
                    error={"name": type(e).__name__, "message": str(e)},
                ).to_log())
                raise

            duration = _elapsed_ms(started)
            if getattr(result, "skipped", False):
                logger.info("notification_job", **self._event(
                    job, JobLifecycleStatus.SKIPPED,
                    reason=getattr(result, "reason", None),
                    duration_ms=duration,
                ).to_log())
            else:
                logger.info("notification_job", **self._event(
                    job, JobLifecycleStatus.COMPLETED, duration_ms=duration,
                ).to_log())
            return result

    async def _on_exhausted(self, job: QueueJob, error: BaseException):
        logger.error("job_exhausted_retries",
                     job_id=job.job_id,
                     key=job.key,
                     category=job.category,
                     entity_id=job.entity_id,
                     fund_id=job.fund_id,
                     attempts=job.attempt,
                     error={"name": type(error).__name__, "message": str(error)})


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
