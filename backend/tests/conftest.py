"""Shared test fixtures for all test groups."""

import base64
import uuid
from datetime import UTC, datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from svix.webhooks import Webhook

from entitlement_engine.core.config import Settings
from entitlement_engine.db.base import Base
from entitlement_engine.db.ledger import SqlAlchemyLedger
from entitlement_engine.integrations.whop import IdentityProfile

TEST_WEBHOOK_SECRET = "ws_test_secret_0123456789"


class StubProfileSource:
    """Stands in for WhopIdentityClient: canned profiles, optional failure."""

    def __init__(self, profiles: dict[str, IdentityProfile] | None = None, error: Exception | None = None):
        self.profiles = profiles or {}
        self.error = error
        self.calls: list[str] = []

    async def fetch_profile(self, external_user_id: str) -> IdentityProfile:
        self.calls.append(external_user_id)
        if self.error is not None:
            raise self.error
        return self.profiles.get(external_user_id, IdentityProfile())

    async def aclose(self) -> None:
        pass


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        whop_webhook_secret=TEST_WEBHOOK_SECRET,
        whop_api_key="whop_test_key",
        database_url="sqlite+aiosqlite://",
        webhook_worker_count=2,
        webhook_drain_timeout_seconds=5.0,
        cloudwatch_metrics_enabled=False,
    )


@pytest.fixture
async def db_engine(tmp_path):
    """SQLite file database with the ledger tables created."""
    import entitlement_engine.db.models  # noqa: F401

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def ledger(session_factory) -> SqlAlchemyLedger:
    return SqlAlchemyLedger(session_factory)


@pytest.fixture
def profiles() -> StubProfileSource:
    return StubProfileSource({"u1": IdentityProfile(username="alice", email="alice@example.com")})


@pytest.fixture
def count_rows(session_factory):
    """Return an async helper counting rows of a model, optionally filtered."""

    async def _count(model, *criteria) -> int:
        async with session_factory() as session:
            result = await session.execute(select(func.count()).select_from(model).where(*criteria))
            return result.scalar_one()

    return _count


@pytest.fixture
def sign_webhook():
    """Return a helper producing Standard Webhooks headers for a body."""

    def _sign(
        body: bytes,
        secret: str = TEST_WEBHOOK_SECRET,
        msg_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> dict[str, str]:
        wh = Webhook(base64.b64encode(secret.encode("utf-8")).decode("ascii"))
        msg_id = msg_id or f"msg_{uuid.uuid4().hex}"
        timestamp = timestamp or datetime.now(UTC)
        return {
            "webhook-id": msg_id,
            "webhook-timestamp": str(int(timestamp.timestamp())),
            "webhook-signature": wh.sign(msg_id, timestamp, body.decode("utf-8")),
            "content-type": "application/json",
        }

    return _sign
