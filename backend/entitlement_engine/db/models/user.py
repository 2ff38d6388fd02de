"""User model: internal identity for a Whop user seen in a webhook."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String, Uuid

from entitlement_engine.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    external_user_id = Column(String(255), unique=True, nullable=False, index=True)

    # Profile fields, best-effort from the identity service
    username = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
