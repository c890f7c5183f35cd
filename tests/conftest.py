"""
tests/conftest.py -- Shared test fixtures for Marquee unit and integration tests.

This module provides:
  - engine / credentials / catalog: isolated in-memory stores for unit tests
  - RecordingMailer: captures outgoing mail (and the activation token in it)
  - api: Harness wrapping a TestClient whose app.state points at test stores,
    plus helpers to create users holding tokens and permissions

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
fixture instance gets a fresh name, so tests never see each other's rows.

Environment must be set before any api/core import: get_settings() is cached
on first call and api.limiter reads RATE_LIMIT_ENABLED at import time.
"""

from __future__ import annotations

import asyncio
import os
import threading
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta

# CRITICAL: set before any api/auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("DATABASE_URL", "sqlite:///file:marquee_unused?mode=memory&cache=shared&uri=true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from auth.models import Scope, User
from auth.permissions import Permission
from auth.store import CredentialStore
from catalog.store import CatalogStore
from core.background import BackgroundRunner
from core.database import create_db_engine
from core.mailer import Mailer

# Any non-empty string will do: no test logs in with a password.
FAKE_PASSWORD_HASH = "$2b$12$" + "x" * 53


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_engine(prefix: str) -> Engine:
    """Create an engine on a fresh named shared-memory SQLite database."""
    return create_db_engine(f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = _make_engine("test_marquee")
    yield eng
    eng.dispose()


@pytest.fixture
def credentials(engine: Engine) -> CredentialStore:
    return CredentialStore(engine)


@pytest.fixture
def catalog(engine: Engine) -> CatalogStore:
    return CatalogStore(engine)


# ---------------------------------------------------------------------------
# Mail capture
# ---------------------------------------------------------------------------


class RecordingMailer(Mailer):
    """Mailer that records messages instead of talking to SMTP.

    send() runs on a BackgroundRunner thread; tests call wait_for_message()
    to block until the registration email has been handed over.
    """

    def __init__(self) -> None:
        super().__init__(host="", port=0, username="", password="", sender="test@marquee.local")
        self.sent: list[tuple[str, str, dict]] = []
        self._event = threading.Event()

    def send(self, recipient: str, template: str, data: dict) -> None:
        self.sent.append((recipient, template, data))
        self._event.set()

    def wait_for_message(self, timeout: float = 5.0) -> tuple[str, str, dict]:
        assert self._event.wait(timeout), "no message was sent"
        return self.sent[-1]


# ---------------------------------------------------------------------------
# API harness
# ---------------------------------------------------------------------------


def _patch_lifespan(engine: Engine, credentials: CredentialStore, catalog: CatalogStore, mailer: Mailer):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see an
    isolated test DB. The purge_task is a long-sleeping coroutine so shutdown
    can cancel a real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.credentials = credentials
        app.state.catalog = catalog
        app.state.mailer = mailer
        app.state.background = BackgroundRunner(max_workers=2)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        app.state.background.shutdown(wait=True)

    return test_lifespan


@dataclass
class Harness:
    client: TestClient
    credentials: CredentialStore
    catalog: CatalogStore
    mailer: RecordingMailer
    _counter: list[int] = field(default_factory=lambda: [0])

    def make_user(
        self,
        *permissions: Permission,
        activated: bool = True,
        email: str | None = None,
    ) -> tuple[User, dict[str, str]]:
        """Create a user holding permissions and return (user, auth headers)."""
        self._counter[0] += 1
        email = email or f"user{self._counter[0]}@example.com"
        user = self.credentials.create_user(
            User(name=f"User {self._counter[0]}", email=email, password_hash=FAKE_PASSWORD_HASH, activated=activated)
        )
        if permissions:
            self.credentials.add_for_user(user.id, *permissions)
        token = self.credentials.new_token(user.id, timedelta(hours=1), Scope.AUTHENTICATION)
        return user, {"Authorization": f"Bearer {token.plaintext}"}

    def movie_body(self, **overrides) -> dict:
        body = {"title": "Moana", "year": 2016, "runtime": "107 mins", "genres": ["animation", "adventure"]}
        body.update(overrides)
        return body


@pytest.fixture
def api(engine: Engine, credentials: CredentialStore, catalog: CatalogStore) -> Generator[Harness, None, None]:
    """Yield a Harness around the real FastAPI app with a patched lifespan.

    Tests hit real route handlers, middleware, and gates but use the
    isolated in-memory stores from the engine fixture.
    """
    mailer = RecordingMailer()
    app.router.lifespan_context = _patch_lifespan(engine, credentials, catalog, mailer)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield Harness(client=client, credentials=credentials, catalog=catalog, mailer=mailer)
