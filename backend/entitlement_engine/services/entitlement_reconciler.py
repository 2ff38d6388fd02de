"""Entitlement reconciler: grants (and, by policy, revokes) paid access.

grant() is idempotent: the ledger upserts on (user_id, resource_id) so any
number of redeliveries leave exactly one grant. A failed grant is the most
severe recoverable failure (it is what the user sees) and is logged at error
level; it is still not propagated, because a sender retry would repeat the
same failure.
"""

import uuid

import structlog

from entitlement_engine.core.exceptions import LedgerWriteError
from entitlement_engine.db.ledger import Ledger
from entitlement_engine.db.models import EntitlementGrant
from entitlement_engine.domain.policies import RevocationPolicy

logger = structlog.get_logger(__name__)


class EntitlementReconciler:
    def __init__(self, ledger: Ledger, revocation_policy: RevocationPolicy = RevocationPolicy.RETAIN):
        self._ledger = ledger
        self.revocation_policy = revocation_policy

    async def grant(self, user_id: uuid.UUID, resource_id: str | None) -> EntitlementGrant | None:
        """Ensure user_id has access to resource_id. Returns the grant, or None if nothing was written."""
        if not resource_id:
            logger.warning("entitlement_missing_resource_id", user_id=str(user_id))
            return None

        try:
            grant = await self._ledger.upsert_entitlement(user_id, resource_id)
        except LedgerWriteError as e:
            logger.error(
                "entitlement_grant_failed",
                user_id=str(user_id),
                resource_id=resource_id,
                reason=e.reason,
                action="manual_intervention_required",
            )
            return None

        logger.info("entitlement_granted", user_id=str(user_id), resource_id=resource_id, grant_id=str(grant.id))
        return grant

    async def revoke(self, user_id: uuid.UUID, resource_id: str | None, reason: str) -> bool:
        """Policy hook for voided/deactivated events. Returns True if a grant was deleted."""
        if not resource_id:
            logger.warning("entitlement_missing_resource_id", user_id=str(user_id), reason=reason)
            return False

        if self.revocation_policy is RevocationPolicy.RETAIN:
            logger.info(
                "entitlement_retained",
                user_id=str(user_id),
                resource_id=resource_id,
                reason=reason,
                policy=self.revocation_policy.value,
            )
            return False

        try:
            deleted = await self._ledger.delete_entitlement(user_id, resource_id)
        except LedgerWriteError as e:
            logger.error(
                "entitlement_revoke_failed",
                user_id=str(user_id),
                resource_id=resource_id,
                reason=e.reason,
            )
            return False

        logger.info(
            "entitlement_revoked",
            user_id=str(user_id),
            resource_id=resource_id,
            reason=reason,
            deleted=deleted,
        )
        return deleted
