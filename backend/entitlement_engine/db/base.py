"""Declarative base and the process-wide async engine.

The engine is created once by the application lifespan (init_db) and
disposed on shutdown (close_db). Components never import the global
directly; they receive the session factory init_db returns.
"""

from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from entitlement_engine.core.config import get_settings


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def engine_options(url: str, echo: bool = False) -> dict[str, Any]:
    """create_async_engine kwargs for the given database URL.

    Postgres gets a bounded pool sized for the webhook worker count; SQLite
    (tests, local runs) uses SQLAlchemy's defaults.
    """
    options: dict[str, Any] = {"echo": echo}
    if make_url(url).get_backend_name() == "postgresql":
        settings = get_settings()
        options.update(
            pool_pre_ping=True,
            pool_size=max(5, settings.webhook_worker_count + 1),
            max_overflow=5,
        )
    return options


async def init_db(url: str | None = None, *, create_tables: bool = True) -> async_sessionmaker[AsyncSession]:
    """Create the engine and session factory, and the ledger tables if asked.

    Idempotent: a second call returns the existing factory.
    """
    global _engine, _session_factory

    if _engine is not None and _session_factory is not None:
        return _session_factory

    settings = get_settings()
    db_url = url or settings.database_url

    _engine = create_async_engine(db_url, **engine_options(db_url, echo=settings.debug))
    _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)

    if create_tables:
        # Models must be imported so Base.metadata knows the ledger tables
        import entitlement_engine.db.models  # noqa: F401

        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    return _session_factory


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None

