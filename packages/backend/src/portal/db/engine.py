"""Database engine, session factory and the per-request session dependency.

Learn: the API and the change listener share this one pool. Request
handlers receive a session from get_db(); each fan-out pass opens its own
session through async_session_factory, because a pass outlives the
request (or NOTIFY callback) that started it.

pool_pre_ping matters here: the server sits idle between messages for
long stretches and Postgres (or a proxy in front of it) drops idle
connections. A stale connection is replaced on checkout instead of
failing the next snapshot poll.
"""

from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from portal.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    """One session per request; rolled back if the handler raised."""
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
