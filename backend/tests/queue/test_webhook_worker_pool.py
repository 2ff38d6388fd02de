"""Tests for WebhookWorkerPool: background execution, isolation and shutdown."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import structlog

from entitlement_engine.core.exceptions import WorkerPoolFullError
from entitlement_engine.domain.events import to_canonical_event
from entitlement_engine.queue.worker_pool import WebhookWorkerPool

pytestmark = pytest.mark.unit


def _event(user_id: str = "u1", kind: str = "payment.succeeded"):
    return to_canonical_event(kind, {"id": f"pay_{user_id}", "user_id": user_id, "metadata": {"template_id": "T"}})


async def test_submitted_jobs_run_in_background():
    handler = AsyncMock()
    pool = WebhookWorkerPool(handler, worker_count=2)
    await pool.start()

    events = [_event(f"u{i}") for i in range(5)]
    for event in events:
        pool.submit(event)
    await pool.join()
    await pool.stop()

    assert handler.await_count == 5
    handled = sorted(call.args[0].external_user_id for call in handler.await_args_list)
    assert handled == [e.external_user_id for e in events]


async def test_submit_does_not_wait_for_handler():
    release = asyncio.Event()
    finished = []

    async def slow_handler(event):
        await release.wait()
        finished.append(event)

    pool = WebhookWorkerPool(slow_handler, worker_count=1)
    await pool.start()

    pool.submit(_event())
    assert finished == []

    release.set()
    await pool.join()
    await pool.stop()
    assert len(finished) == 1


async def test_handler_exception_is_isolated():
    metrics = MagicMock()
    handled = []

    async def handler(event):
        if event.external_user_id == "bad":
            raise RuntimeError("boom")
        handled.append(event.external_user_id)

    pool = WebhookWorkerPool(handler, worker_count=1, metrics=metrics)
    await pool.start()

    with patch("entitlement_engine.queue.worker_pool.logger") as mock_logger:
        pool.submit(_event("bad"))
        pool.submit(_event("good"))
        await pool.join()

    assert handled == ["good"]
    assert pool.running
    mock_logger.exception.assert_called_once()
    assert mock_logger.exception.call_args.args[0] == "webhook_handler_failed"
    metrics.incr.assert_any_call("webhook.failed", "payment_succeeded")
    metrics.incr.assert_any_call("webhook.processed", "payment_succeeded")
    await pool.stop()


async def test_queue_full_raises():
    started = asyncio.Event()
    release = asyncio.Event()

    async def handler(event):
        started.set()
        await release.wait()

    pool = WebhookWorkerPool(handler, worker_count=1, maxsize=1)
    await pool.start()

    pool.submit(_event("a"))
    await started.wait()
    pool.submit(_event("b"))

    with pytest.raises(WorkerPoolFullError):
        pool.submit(_event("c"))

    release.set()
    await pool.join()
    await pool.stop()


async def test_submit_before_start_raises():
    pool = WebhookWorkerPool(AsyncMock())

    with pytest.raises(WorkerPoolFullError):
        pool.submit(_event())


async def test_stop_drains_pending_jobs():
    handled = []

    async def handler(event):
        await asyncio.sleep(0.01)
        handled.append(event.external_user_id)

    pool = WebhookWorkerPool(handler, worker_count=1)
    await pool.start()
    for i in range(3):
        pool.submit(_event(f"u{i}"))

    await pool.stop(drain_timeout=5.0)

    assert handled == ["u0", "u1", "u2"]
    assert not pool.running


async def test_stop_cancels_stuck_workers_after_timeout():
    async def handler(event):
        await asyncio.Event().wait()

    pool = WebhookWorkerPool(handler, worker_count=1)
    await pool.start()
    pool.submit(_event())
    await asyncio.sleep(0)

    with patch("entitlement_engine.queue.worker_pool.logger") as mock_logger:
        await pool.stop(drain_timeout=0.05)

    assert not pool.running
    assert mock_logger.error.call_args.args[0] == "webhook_worker_pool_drain_timeout"


async def test_correlation_id_is_bound_for_handler_logs():
    seen = {}

    async def handler(event):
        seen.update(structlog.contextvars.get_contextvars())

    pool = WebhookWorkerPool(handler, worker_count=1)
    await pool.start()
    pool.submit(_event(), correlation_id="req-123")
    await pool.join()
    await pool.stop()

    assert seen["correlation_id"] == "req-123"
    assert seen["event_kind"] == "payment_succeeded"
    assert "correlation_id" not in structlog.contextvars.get_contextvars()
