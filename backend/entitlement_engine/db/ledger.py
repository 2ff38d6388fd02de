"""Ledger: persistence for users, purchases and entitlement grants.

Every write the engine performs lands here. Idempotency is delegated to the
database: users are keyed by a unique external_user_id and grants by a unique
(user_id, resource_id) pair, and both are written with INSERT ... ON CONFLICT
so concurrent deliveries of the same event cannot create duplicate rows.
No application-level locks are taken.

SQLAlchemy errors are re-raised as LedgerWriteError so callers can decide
which failures are fatal to an event.
"""

import uuid
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitlement_engine.core.exceptions import LedgerWriteError
from entitlement_engine.db.models import EntitlementGrant, Purchase, User


class Ledger(Protocol):
    """Operations the engine needs from persistent storage."""

    async def get_user_by_external_id(self, external_user_id: str) -> User | None: ...

    async def upsert_user(
        self, external_user_id: str, username: str | None = None, email: str | None = None
    ) -> User: ...

    async def insert_purchase(
        self,
        user_id: uuid.UUID,
        external_payment_id: str,
        amount: float,
        status: str,
        metadata: dict[str, Any],
    ) -> Purchase: ...

    async def list_purchases(self, user_id: uuid.UUID) -> list[Purchase]: ...

    async def list_purchases_by_external_id(self, external_user_id: str) -> list[Purchase]: ...

    async def upsert_entitlement(self, user_id: uuid.UUID, resource_id: str) -> EntitlementGrant: ...

    async def delete_entitlement(self, user_id: uuid.UUID, resource_id: str) -> bool: ...

    async def has_entitlement(self, user_id: uuid.UUID, resource_id: str) -> bool: ...


def _dialect_insert(session: AsyncSession):
    """Pick the INSERT construct that supports ON CONFLICT for the bound dialect."""
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise LedgerWriteError("upsert", f"dialect '{dialect}' has no ON CONFLICT support")


class SqlAlchemyLedger:
    """Ledger backed by the relational store through an async session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_user_by_external_id(self, external_user_id: str) -> User | None:
        async with self._session_factory() as session:
            result = await session.execute(select(User).where(User.external_user_id == external_user_id))
            return result.scalar_one_or_none()

    async def upsert_user(
        self, external_user_id: str, username: str | None = None, email: str | None = None
    ) -> User:
        """Create the user or fill in missing profile fields.

        Existing username/email values are never replaced with NULL, so a
        degraded (profile-less) upsert racing an enriched one cannot erase data.
        """
        async with self._session_factory() as session:
            insert = _dialect_insert(session)
            now = datetime.now(UTC)
            stmt = insert(User).values(
                id=uuid.uuid4(),
                external_user_id=external_user_id,
                username=username,
                email=email,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["external_user_id"],
                set_={
                    "username": func.coalesce(User.__table__.c.username, stmt.excluded.username),
                    "email": func.coalesce(User.__table__.c.email, stmt.excluded.email),
                    "updated_at": now,
                },
            )
            try:
                await session.execute(stmt)
                await session.commit()
                # Fetch the row (handles both new insert and conflict cases)
                result = await session.execute(select(User).where(User.external_user_id == external_user_id))
                return result.scalar_one()
            except SQLAlchemyError as e:
                await session.rollback()
                raise LedgerWriteError("upsert_user", str(e)) from e

    async def insert_purchase(
        self,
        user_id: uuid.UUID,
        external_payment_id: str,
        amount: float,
        status: str,
        metadata: dict[str, Any],
    ) -> Purchase:
        async with self._session_factory() as session:
            purchase = Purchase(
                user_id=user_id,
                external_payment_id=external_payment_id,
                amount=amount,
                status=status,
                metadata_=metadata,
            )
            session.add(purchase)
            try:
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise LedgerWriteError("insert_purchase", str(e)) from e
            await session.refresh(purchase)
            return purchase

    async def list_purchases(self, user_id: uuid.UUID) -> list[Purchase]:
        """Purchase history for a user, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Purchase).where(Purchase.user_id == user_id).order_by(Purchase.created_at.desc())
            )
            return list(result.scalars().all())

    async def list_purchases_by_external_id(self, external_user_id: str) -> list[Purchase]:
        """Purchase history keyed by Whop user id. Unknown users have none."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Purchase)
                .join(User, Purchase.user_id == User.id)
                .where(User.external_user_id == external_user_id)
                .order_by(Purchase.created_at.desc())
            )
            return list(result.scalars().all())

    async def upsert_entitlement(self, user_id: uuid.UUID, resource_id: str) -> EntitlementGrant:
        """Insert the grant if absent; an existing grant is left untouched."""
        async with self._session_factory() as session:
            insert = _dialect_insert(session)
            stmt = (
                insert(EntitlementGrant)
                .values(
                    id=uuid.uuid4(),
                    user_id=user_id,
                    resource_id=resource_id,
                    created_at=datetime.now(UTC),
                )
                .on_conflict_do_nothing(index_elements=["user_id", "resource_id"])
            )
            try:
                await session.execute(stmt)
                await session.commit()
                # A concurrent revoke can delete the row before it is read back
                result = await session.execute(
                    select(EntitlementGrant).where(
                        EntitlementGrant.user_id == user_id,
                        EntitlementGrant.resource_id == resource_id,
                    )
                )
                return result.scalar_one()
            except SQLAlchemyError as e:
                await session.rollback()
                raise LedgerWriteError("upsert_entitlement", str(e)) from e

    async def delete_entitlement(self, user_id: uuid.UUID, resource_id: str) -> bool:
        """Delete a grant. Returns True if a row was removed."""
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    delete(EntitlementGrant).where(
                        EntitlementGrant.user_id == user_id,
                        EntitlementGrant.resource_id == resource_id,
                    )
                )
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise LedgerWriteError("delete_entitlement", str(e)) from e
            return result.rowcount > 0

    async def has_entitlement(self, user_id: uuid.UUID, resource_id: str) -> bool:
        """Read used by list-viewing authorization: does this user have paid access?"""
        async with self._session_factory() as session:
            result = await session.execute(
                select(EntitlementGrant.id).where(
                    EntitlementGrant.user_id == user_id,
                    EntitlementGrant.resource_id == resource_id,
                )
            )
            return result.first() is not None
