"""Re-export all models so Base.metadata sees them."""

from entitlement_engine.db.models.entitlement_grant import EntitlementGrant
from entitlement_engine.db.models.purchase import Purchase, PurchaseStatus
from entitlement_engine.db.models.user import User

__all__ = [
    "EntitlementGrant",
    "Purchase",
    "PurchaseStatus",
    "User",
]
