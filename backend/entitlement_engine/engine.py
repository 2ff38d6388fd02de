"""Wiring for the webhook engine.

Everything with a lifetime longer than one request (verifier, Whop client,
ledger, worker pool) is built here once, at startup, and handed to the
components that need it. Nothing is kept in module-level globals.
"""

from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitlement_engine.core.config import Settings
from entitlement_engine.db.ledger import Ledger, SqlAlchemyLedger
from entitlement_engine.domain.policies import RevocationPolicy
from entitlement_engine.integrations.whop import WhopIdentityClient
from entitlement_engine.metrics.cloudwatch import WebhookMetrics
from entitlement_engine.queue.dispatcher import WebhookDispatcher
from entitlement_engine.queue.worker_pool import WebhookWorkerPool
from entitlement_engine.services.entitlement_reconciler import EntitlementReconciler
from entitlement_engine.services.event_processor import EventProcessor
from entitlement_engine.services.identity_resolver import IdentityResolver
from entitlement_engine.services.purchase_recorder import PurchaseRecorder
from entitlement_engine.services.verifier import WebhookVerifier

logger = structlog.get_logger(__name__)


@dataclass
class WebhookEngine:
    settings: Settings
    verifier: WebhookVerifier | None
    ledger: Ledger
    identity_client: WhopIdentityClient
    processor: EventProcessor
    pool: WebhookWorkerPool
    dispatcher: WebhookDispatcher
    metrics: WebhookMetrics

    async def start(self) -> None:
        await self.pool.start()

    async def shutdown(self) -> None:
        await self.pool.stop(drain_timeout=self.settings.webhook_drain_timeout_seconds)
        await self.identity_client.aclose()
        self.metrics.shutdown()


def build_engine(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    *,
    ledger: Ledger | None = None,
    identity_client: WhopIdentityClient | None = None,
) -> WebhookEngine:
    """Assemble the engine from settings.

    Either a session factory or a ready ledger must be supplied. A missing
    webhook secret does not stop startup; it leaves the verifier unset so the
    webhook route fails closed on every request.
    """
    if ledger is None:
        if session_factory is None:
            raise ValueError("build_engine needs a session_factory or a ledger")
        ledger = SqlAlchemyLedger(session_factory)

    verifier = None
    if settings.whop_webhook_secret:
        verifier = WebhookVerifier(settings.whop_webhook_secret)
    else:
        logger.error("webhook_secret_missing", action="webhook_route_will_return_500")

    if identity_client is None:
        identity_client = WhopIdentityClient(
            api_key=settings.whop_api_key,
            base_url=settings.whop_api_base_url,
            timeout=settings.identity_lookup_timeout_seconds,
            attempts=settings.identity_lookup_attempts,
        )

    metrics = WebhookMetrics(
        namespace=settings.cloudwatch_namespace,
        region=settings.aws_region,
        enabled=settings.cloudwatch_metrics_enabled,
    )

    processor = EventProcessor(
        identity=IdentityResolver(ledger, identity_client),
        purchases=PurchaseRecorder(ledger),
        entitlements=EntitlementReconciler(
            ledger, revocation_policy=RevocationPolicy(settings.entitlement_revocation_policy)
        ),
    )
    pool = WebhookWorkerPool(
        processor.process,
        worker_count=settings.webhook_worker_count,
        maxsize=settings.webhook_queue_maxsize,
        metrics=metrics,
    )

    return WebhookEngine(
        settings=settings,
        verifier=verifier,
        ledger=ledger,
        identity_client=identity_client,
        processor=processor,
        pool=pool,
        dispatcher=WebhookDispatcher(pool, metrics=metrics),
        metrics=metrics,
    )
