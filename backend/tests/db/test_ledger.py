"""Tests for SqlAlchemyLedger against SQLite (ON CONFLICT semantics match Postgres)."""

import asyncio
import uuid
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import delete
from sqlalchemy.exc import NoResultFound, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from entitlement_engine.core.exceptions import LedgerWriteError
from entitlement_engine.db.ledger import SqlAlchemyLedger, _dialect_insert
from entitlement_engine.db.models import EntitlementGrant, User

pytestmark = pytest.mark.integration


async def test_upsert_user_creates_row(ledger):
    user = await ledger.upsert_user("u1", username="alice", email="a@example.com")

    assert isinstance(user.id, uuid.UUID)
    assert user.external_user_id == "u1"
    assert user.username == "alice"
    assert user.created_at is not None

    fetched = await ledger.get_user_by_external_id("u1")
    assert fetched.id == user.id


async def test_upsert_user_is_keyed_by_external_id(ledger, count_rows):
    first = await ledger.upsert_user("u1")
    second = await ledger.upsert_user("u1")

    assert first.id == second.id
    assert await count_rows(User) == 1


async def test_upsert_user_fills_missing_profile_fields(ledger):
    await ledger.upsert_user("u1")

    user = await ledger.upsert_user("u1", username="alice", email="a@example.com")

    assert user.username == "alice"
    assert user.email == "a@example.com"


async def test_upsert_user_never_erases_profile_fields(ledger):
    await ledger.upsert_user("u1", username="alice", email="a@example.com")

    user = await ledger.upsert_user("u1")

    assert user.username == "alice"
    assert user.email == "a@example.com"


async def test_concurrent_upserts_create_one_user(ledger, count_rows):
    users = await asyncio.gather(*(ledger.upsert_user("u1") for _ in range(8)))

    assert len({u.id for u in users}) == 1
    assert await count_rows(User) == 1


async def test_get_unknown_user_returns_none(ledger):
    assert await ledger.get_user_by_external_id("nobody") is None


async def test_insert_purchase_stores_metadata(ledger):
    user = await ledger.upsert_user("u1")

    purchase = await ledger.insert_purchase(user.id, "pay_1", 3.5, "completed", {"template_id": "T"})

    assert purchase.id is not None
    assert purchase.metadata_ == {"template_id": "T"}
    assert purchase.created_at is not None


async def test_upsert_entitlement_returns_existing_grant(ledger, count_rows):
    user = await ledger.upsert_user("u1")

    first = await ledger.upsert_entitlement(user.id, "T")
    second = await ledger.upsert_entitlement(user.id, "T")

    assert first.id == second.id
    assert first.created_at == second.created_at
    assert await count_rows(EntitlementGrant) == 1


async def test_delete_entitlement(ledger):
    user = await ledger.upsert_user("u1")
    await ledger.upsert_entitlement(user.id, "T")

    assert await ledger.delete_entitlement(user.id, "T") is True
    assert await ledger.delete_entitlement(user.id, "T") is False
    assert await ledger.has_entitlement(user.id, "T") is False


async def test_has_entitlement_is_scoped_to_user_and_resource(ledger):
    alice = await ledger.upsert_user("u1")
    bob = await ledger.upsert_user("u2")
    await ledger.upsert_entitlement(alice.id, "T")

    assert await ledger.has_entitlement(alice.id, "T") is True
    assert await ledger.has_entitlement(alice.id, "OTHER") is False
    assert await ledger.has_entitlement(bob.id, "T") is False


async def test_database_errors_become_ledger_write_errors():
    # In-memory database without the ledger tables
    empty_engine = create_async_engine("sqlite+aiosqlite://")
    ledger = SqlAlchemyLedger(async_sessionmaker(empty_engine, expire_on_commit=False))

    with pytest.raises(LedgerWriteError) as exc_info:
        await ledger.upsert_entitlement(uuid.uuid4(), "T")

    assert exc_info.value.operation == "upsert_entitlement"
    assert isinstance(exc_info.value.__cause__, OperationalError)
    await empty_engine.dispose()


@pytest.mark.unit
def test_unsupported_dialect_is_rejected():
    session = MagicMock()
    session.bind.dialect.name = "mysql"

    with pytest.raises(LedgerWriteError):
        _dialect_insert(session)


async def test_list_purchases_newest_first(ledger):
    user = await ledger.upsert_user("u1")
    other = await ledger.upsert_user("u2")
    await ledger.insert_purchase(user.id, "pay_old", 1.0, "completed", {})
    await ledger.insert_purchase(other.id, "pay_other", 1.0, "completed", {})
    await ledger.insert_purchase(user.id, "pay_new", 2.0, "completed", {})

    purchases = await ledger.list_purchases(user.id)

    assert [p.external_payment_id for p in purchases] == ["pay_new", "pay_old"]


async def test_list_purchases_by_external_id(ledger):
    user = await ledger.upsert_user("u1")
    await ledger.insert_purchase(user.id, "pay_1", 1.0, "completed", {"template_id": "T"})
    await ledger.insert_purchase(user.id, "pay_2", 1.0, "completed", {})

    purchases = await ledger.list_purchases_by_external_id("u1")

    assert [p.external_payment_id for p in purchases] == ["pay_2", "pay_1"]
    assert all(p.user_id == user.id for p in purchases)


async def test_list_purchases_for_unknown_user_is_empty(ledger):
    assert await ledger.list_purchases_by_external_id("nobody") == []
    assert await ledger.list_purchases(uuid.uuid4()) == []


async def test_grant_removed_before_read_back_raises_ledger_error(ledger, db_engine):
    user = await ledger.upsert_user("u1")
    original_commit = AsyncSession.commit

    async def commit_then_revoke(self):
        await original_commit(self)
        # A concurrent revoke lands between the insert and the read-back
        async with db_engine.begin() as conn:
            await conn.execute(delete(EntitlementGrant))

    with patch.object(AsyncSession, "commit", commit_then_revoke):
        with pytest.raises(LedgerWriteError) as exc_info:
            await ledger.upsert_entitlement(user.id, "T")

    assert exc_info.value.operation == "upsert_entitlement"
    assert isinstance(exc_info.value.__cause__, NoResultFound)
