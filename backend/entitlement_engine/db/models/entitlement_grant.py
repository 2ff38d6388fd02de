"""EntitlementGrant model: paid access of one user to one tier-list template.

At most one row per (user_id, resource_id). The unique constraint is what
makes repeated webhook deliveries safe: grants are written with
INSERT ... ON CONFLICT DO NOTHING against it.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid

from entitlement_engine.db.base import Base


class EntitlementGrant(Base):
    __tablename__ = "entitlement_grants"
    __table_args__ = (UniqueConstraint("user_id", "resource_id", name="uq_entitlement_grants_user_resource"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    resource_id = Column(String(255), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
