"""Database package: declarative base, engine lifecycle and the ledger."""

from entitlement_engine.db.base import Base, close_db, init_db

__all__ = [
    "Base",
    "close_db",
    "init_db",
]
