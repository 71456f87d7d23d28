"""Test fixtures — isolated DB sessions that rollback after each test.

Learn: Testing pattern for async SQLAlchemy + FastAPI + asyncpg:

1. Each test gets its own engine + connection + transaction (function-scoped)
2. The session uses join_transaction_mode="create_savepoint" so that
   when the service layer calls commit(), it creates a SAVEPOINT, not a real commit.
3. After the test, we rollback the outer transaction — all test data vanishes.

The push transport is swapped for a RecordingSender so no test talks to a
real push service. Store, bridge, sidebar and session tests need none of
this; they run against in-memory fakes.
"""

from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from portal.api.push import get_push_sender
from portal.config import settings
from portal.db.engine import get_db
from portal.main import app
from portal.services.push_sender import EndpointGoneError, EndpointTransientError


TEST_DB_URL = settings.database_url


class RecordingSender:
    """PushSender fake: records attempts, fails endpoints on request."""

    def __init__(self, gone: Optional[set[str]] = None, flaky: Optional[set[str]] = None):
        self.gone = set(gone or ())
        self.flaky = set(flaky or ())
        self.attempts: list[str] = []
        self.payloads: list[dict] = []

    async def send(self, endpoint: str, keys: dict, payload: dict) -> None:
        self.attempts.append(endpoint)
        self.payloads.append(payload)
        if endpoint in self.gone:
            raise EndpointGoneError(endpoint, 410)
        if endpoint in self.flaky:
            raise EndpointTransientError(endpoint, "503 Service Unavailable", 503)


@pytest.fixture()
def push_sender():
    return RecordingSender()


@pytest.fixture()
def make_sender():
    """Factory for senders with chosen gone/flaky endpoints."""
    return RecordingSender


@pytest_asyncio.fixture()
async def db_session():
    """Per-test session with automatic rollback via savepoints."""
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(
            bind=conn,
            expire_on_commit=False,
            join_transaction_mode="create_savepoint",
        )

        try:
            yield session
        finally:
            await session.close()
            await trans.rollback()
    await engine.dispose()


@pytest_asyncio.fixture()
async def client(db_session, push_sender):
    """HTTP client with get_db and the push transport overridden."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_push_sender] = lambda: push_sender

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
