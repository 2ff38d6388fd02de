"""API-specific test fixtures.

The app owns its database in these tests: the lifespan calls init_db() in the
TestClient's event loop, so the async engine never crosses loops. Assertions
read the same SQLite file through the stdlib driver once the client has
exited, which is after the worker pool has drained.
"""

import json
import sqlite3

import pytest
from fastapi.testclient import TestClient

from entitlement_engine.core.config import Settings
from entitlement_engine.main import create_app


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "webhooks.db"


@pytest.fixture
def api_settings(settings, db_path) -> Settings:
    return settings.model_copy(update={"database_url": f"sqlite+aiosqlite:///{db_path}"})


@pytest.fixture
def make_client(profiles):
    """Build a TestClient for an app configured with the given settings."""

    def _make(settings: Settings, identity_client=None) -> TestClient:
        app = create_app(settings, identity_client=identity_client or profiles)
        return TestClient(app)

    return _make


@pytest.fixture
def post_webhook(sign_webhook):
    """Return a helper that signs and posts an envelope."""

    def _post(client: TestClient, kind: str, data: dict, headers: dict | None = None, msg_id: str | None = None):
        body = json.dumps({"type": kind, "data": data}).encode("utf-8")
        signed = headers if headers is not None else sign_webhook(body, msg_id=msg_id)
        return client.post("/api/webhooks", content=body, headers=signed)

    return _post


@pytest.fixture
def query_db(db_path):
    """Run a read-only SQL query against the app's SQLite file."""

    def _query(sql: str, *params) -> list[tuple]:
        if not db_path.exists():
            return []
        conn = sqlite3.connect(db_path)
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    return _query
