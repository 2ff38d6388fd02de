"""WebhookWorkerPool: runs webhook handlers after the sender has been acked.

A bounded asyncio queue drained by a fixed number of worker tasks started in
the application lifespan. Jobs outlive the request that enqueued them.

Guarantees:
- submit() never awaits, so it cannot delay the HTTP response
- a handler exception is logged at this boundary and never propagates
- no retries: each job runs once, to completion or failure
- stop() drains queued jobs for a bounded time before cancelling workers
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import structlog

from entitlement_engine.core.exceptions import WorkerPoolFullError
from entitlement_engine.domain.events import CanonicalEvent
from entitlement_engine.metrics.cloudwatch import WebhookMetrics

logger = structlog.get_logger(__name__)


@dataclass
class WebhookJob:
    event: CanonicalEvent
    correlation_id: str | None = None
    enqueued_at: float = field(default_factory=time.monotonic)


class WebhookWorkerPool:
    def __init__(
        self,
        handler: Callable[[CanonicalEvent], Awaitable[None]],
        worker_count: int = 4,
        maxsize: int = 1000,
        metrics: WebhookMetrics | None = None,
    ):
        self._handler = handler
        self.worker_count = max(1, worker_count)
        self.maxsize = max(1, maxsize)
        self._metrics = metrics or WebhookMetrics(enabled=False)
        self._queue: asyncio.Queue[WebhookJob] | None = None
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers) and not all(w.done() for w in self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"webhook-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info("webhook_worker_pool_started", worker_count=self.worker_count, maxsize=self.maxsize)

    def submit(self, event: CanonicalEvent, correlation_id: str | None = None) -> None:
        """Enqueue an event without waiting. Raises WorkerPoolFullError when at capacity."""
        if self._queue is None or not self.running:
            raise WorkerPoolFullError("webhook worker pool is not running")
        try:
            self._queue.put_nowait(WebhookJob(event=event, correlation_id=correlation_id))
        except asyncio.QueueFull as e:
            raise WorkerPoolFullError(f"webhook queue full ({self.maxsize} jobs)") from e

    async def join(self) -> None:
        """Wait until every job submitted so far has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, drain_timeout: float = 10.0) -> None:
        if not self._workers:
            return
        if self._queue is not None:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
            except TimeoutError:
                logger.error("webhook_worker_pool_drain_timeout", abandoned_jobs=self._queue.qsize())

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("webhook_worker_pool_stopped")

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        while True:
            job = await self._queue.get()
            try:
                await self._run_job(job, index)
            finally:
                self._queue.task_done()

    async def _run_job(self, job: WebhookJob, worker_index: int) -> None:
        event = job.event
        with structlog.contextvars.bound_contextvars(
            correlation_id=job.correlation_id,
            event_kind=event.kind.value,
            worker=worker_index,
        ):
            start = time.monotonic()
            try:
                await self._handler(event)
            except Exception:
                logger.exception(
                    "webhook_handler_failed",
                    external_user_id=event.external_user_id,
                    external_reference_id=event.external_reference_id,
                )
                self._metrics.incr("webhook.failed", event.kind.value)
                return

            logger.info(
                "webhook_event_processed",
                queue_wait_ms=int((start - job.enqueued_at) * 1000),
                duration_ms=int((time.monotonic() - start) * 1000),
            )
            self._metrics.incr("webhook.processed", event.kind.value)
