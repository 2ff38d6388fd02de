"""Fast-ack dispatcher: routes a canonical event to the worker pool.

The HTTP route acks the sender regardless of the outcome returned here;
the outcome exists for logging, metrics and tests.
"""

from enum import Enum

import structlog

from entitlement_engine.core.exceptions import WorkerPoolFullError
from entitlement_engine.domain.events import CanonicalEvent, CanonicalEventKind
from entitlement_engine.metrics.cloudwatch import WebhookMetrics
from entitlement_engine.queue.worker_pool import WebhookWorkerPool

logger = structlog.get_logger(__name__)


class DispatchOutcome(str, Enum):
    QUEUED = "queued"
    DROPPED_UNKNOWN = "dropped_unknown"
    DROPPED_QUEUE_FULL = "dropped_queue_full"


class WebhookDispatcher:
    def __init__(self, pool: WebhookWorkerPool, metrics: WebhookMetrics | None = None):
        self._pool = pool
        self._metrics = metrics or WebhookMetrics(enabled=False)

    def dispatch(self, event: CanonicalEvent, correlation_id: str | None = None) -> DispatchOutcome:
        """Hand the event to a background worker without waiting for it."""
        self._metrics.incr("webhook.received", event.kind.value)

        if event.kind is CanonicalEventKind.UNKNOWN:
            logger.info("webhook_event_ignored", raw_kind=event.raw_kind)
            self._metrics.incr("webhook.dropped", event.kind.value)
            return DispatchOutcome.DROPPED_UNKNOWN

        try:
            self._pool.submit(event, correlation_id=correlation_id)
        except WorkerPoolFullError as e:
            logger.error(
                "webhook_event_dropped",
                event_kind=event.kind.value,
                external_user_id=event.external_user_id,
                external_reference_id=event.external_reference_id,
                reason=str(e),
            )
            self._metrics.incr("webhook.queue_full", event.kind.value)
            return DispatchOutcome.DROPPED_QUEUE_FULL

        logger.info("webhook_event_queued", event_kind=event.kind.value, pending=self._pool.pending)
        return DispatchOutcome.QUEUED
