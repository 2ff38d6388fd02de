"""Purchase ledger writer.

Appends one Purchase row per granting event. A failed write is a data-quality
gap, not a reason to withhold access: it is logged and None is returned so
the event can still reach the entitlement reconciler.
"""

import uuid
from typing import Any

import structlog

from entitlement_engine.core.exceptions import LedgerWriteError
from entitlement_engine.db.ledger import Ledger
from entitlement_engine.db.models import Purchase, PurchaseStatus

logger = structlog.get_logger(__name__)


class PurchaseRecorder:
    def __init__(self, ledger: Ledger):
        self._ledger = ledger

    async def record(
        self,
        user_id: uuid.UUID,
        external_payment_id: str,
        amount: float | None,
        status: PurchaseStatus,
        metadata: dict[str, Any] | None = None,
    ) -> Purchase | None:
        try:
            purchase = await self._ledger.insert_purchase(
                user_id=user_id,
                external_payment_id=external_payment_id,
                amount=amount or 0.0,
                status=status.value,
                metadata=metadata or {},
            )
        except LedgerWriteError as e:
            logger.error(
                "purchase_record_failed",
                user_id=str(user_id),
                external_payment_id=external_payment_id,
                reason=e.reason,
            )
            return None

        logger.info(
            "purchase_recorded",
            purchase_id=str(purchase.id),
            user_id=str(user_id),
            external_payment_id=external_payment_id,
            status=status.value,
        )
        return purchase
