"""CloudWatch custom metric emission for webhook processing.

All emission is fire-and-forget: failures are caught internally and logged
as warnings via structlog. It NEVER raises or blocks the caller.

Metrics are emitted via boto3 put_metric_data. Since boto3 is synchronous,
calls are dispatched to a ThreadPoolExecutor to avoid blocking the event loop.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime

import boto3
import structlog

logger = structlog.get_logger(__name__)


class WebhookMetrics:
    """Counts webhook outcomes (received, dropped, processed, failed, ...)."""

    def __init__(self, namespace: str = "TierList/Webhooks", region: str = "us-east-1", enabled: bool = False):
        self.namespace = namespace
        self.region = region
        self.enabled = enabled
        self._client = None
        self._executor: ThreadPoolExecutor | None = None

    def _get_client(self):
        if self._client is None:
            self._client = boto3.client("cloudwatch", region_name=self.region)
        return self._client

    def _put_count(self, metric_name: str, event_kind: str | None) -> None:
        """Synchronous put_metric_data. Runs in thread pool."""
        dimensions = []
        if event_kind:
            dimensions.append({"Name": "EventKind", "Value": event_kind})
        try:
            self._get_client().put_metric_data(
                Namespace=self.namespace,
                MetricData=[{
                    "MetricName": metric_name,
                    "Dimensions": dimensions,
                    "Value": 1.0,
                    "Unit": "Count",
                    "Timestamp": datetime.now(UTC),
                }],
            )
        except Exception as e:
            logger.warning("metric_emit_failed", error=str(e), metric=metric_name)

    def incr(self, metric_name: str, event_kind: str | None = None) -> None:
        """Count one occurrence. Non-blocking; a no-op when metrics are disabled."""
        if not self.enabled:
            return
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="cw-metrics")
        try:
            self._executor.submit(self._put_count, metric_name, event_kind)
        except RuntimeError as e:
            # Executor already shut down during application teardown
            logger.warning("metric_emit_skipped", error=str(e), metric=metric_name)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
