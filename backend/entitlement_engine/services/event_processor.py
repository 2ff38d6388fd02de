"""Per-kind webhook handlers: resolve identity, record the purchase, reconcile access.

Runs on the background worker pool, after the sender has been acked.
Granting kinds walk the full pipeline (resolve -> record -> reconcile);
revoking kinds only look the user up and hand off to the revocation policy.
Handlers may raise (e.g. when the user row itself cannot be written); the
worker pool catches and logs that at its boundary.
"""

from collections.abc import Awaitable, Callable

import structlog

from entitlement_engine.db.models import PurchaseStatus
from entitlement_engine.domain.events import CanonicalEvent, CanonicalEventKind
from entitlement_engine.services.entitlement_reconciler import EntitlementReconciler
from entitlement_engine.services.identity_resolver import IdentityResolver
from entitlement_engine.services.purchase_recorder import PurchaseRecorder

logger = structlog.get_logger(__name__)

EventHandler = Callable[[CanonicalEvent], Awaitable[None]]


class EventProcessor:
    def __init__(
        self,
        identity: IdentityResolver,
        purchases: PurchaseRecorder,
        entitlements: EntitlementReconciler,
    ):
        self.identity = identity
        self.purchases = purchases
        self.entitlements = entitlements
        self.handlers: dict[CanonicalEventKind, EventHandler] = {
            CanonicalEventKind.PAYMENT_SUCCEEDED: self.handle_granting_event,
            CanonicalEventKind.INVOICE_PAID: self.handle_granting_event,
            CanonicalEventKind.MEMBERSHIP_ACTIVATED: self.handle_granting_event,
            CanonicalEventKind.INVOICE_VOIDED: self.handle_revoking_event,
            CanonicalEventKind.MEMBERSHIP_DEACTIVATED: self.handle_revoking_event,
        }

    def handler_for(self, kind: CanonicalEventKind) -> EventHandler | None:
        return self.handlers.get(kind)

    async def process(self, event: CanonicalEvent) -> None:
        handler = self.handler_for(event.kind)
        if handler is None:
            logger.info("webhook_event_ignored", event_kind=event.kind.value, raw_kind=event.raw_kind)
            return
        await handler(event)

    async def handle_granting_event(self, event: CanonicalEvent) -> None:
        if not event.external_user_id:
            logger.warning("webhook_event_missing_user", event_kind=event.kind.value, raw_kind=event.raw_kind)
            return

        user = await self.identity.resolve(event.external_user_id)

        if event.external_reference_id:
            await self.purchases.record(
                user_id=user.id,
                external_payment_id=event.external_reference_id,
                amount=event.amount,
                status=PurchaseStatus.COMPLETED,
                metadata=dict(event.metadata),
            )
        else:
            logger.warning(
                "purchase_missing_reference_id",
                user_id=str(user.id),
                event_kind=event.kind.value,
            )

        resource_id = event.resource_id
        if resource_id is None:
            logger.warning(
                "webhook_event_missing_resource_id",
                user_id=str(user.id),
                external_user_id=event.external_user_id,
                event_kind=event.kind.value,
            )
            return

        await self.entitlements.grant(user.id, resource_id)

    async def handle_revoking_event(self, event: CanonicalEvent) -> None:
        if not event.external_user_id:
            logger.warning("webhook_event_missing_user", event_kind=event.kind.value, raw_kind=event.raw_kind)
            return

        user = await self.identity.lookup(event.external_user_id)
        if user is None:
            logger.info(
                "revocation_unknown_user",
                external_user_id=event.external_user_id,
                event_kind=event.kind.value,
            )
            return

        await self.entitlements.revoke(user.id, event.resource_id, reason=event.kind.value)
