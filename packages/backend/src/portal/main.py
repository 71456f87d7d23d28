"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown of the pieces that outlive a
request: the Redis pool (WebSocket fan-out) and the change listener
(push fan-out). Neither blocks startup: without Redis clients fall back to
polling, and a listener that cannot reach Postgres keeps retrying from its
watchdog. The HTTP API comes up regardless.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from portal import __version__
from portal.api import api_router
from portal.config import settings

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "portal.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from portal.realtime.pubsub import close_redis, init_redis
    try:
        await init_redis()
        logger.info("portal.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("portal.redis_unavailable", error=str(e))

    listener = None
    watch_task: Optional[asyncio.Task] = None
    if settings.run_listener:
        from portal.db.engine import async_session_factory
        from portal.listener.change_listener import (
            ChangeListener,
            ListenerConfig,
            asyncpg_dsn,
        )
        from portal.services.push_sender import sender_from_settings

        listener = ChangeListener(
            ListenerConfig(
                database_url=asyncpg_dsn(settings.database_url),
                channel=settings.change_channel,
            ),
            sender_from_settings(),
            async_session_factory,
        )
        try:
            await listener.start()
            logger.info("portal.listener_started", channel=settings.change_channel)
        except Exception as e:
            logger.warning(
                "portal.listener_unavailable",
                error=str(e),
                retry_in=listener.config.watchdog_interval,
            )
        watch_task = asyncio.create_task(listener.watch())

    app.state.listener = listener

    yield

    logger.info("portal.shutdown")

    if listener is not None:
        await listener.stop()
    if watch_task is not None:
        watch_task.cancel()
        try:
            await watch_task
        except asyncio.CancelledError:
            pass

    await close_redis()

    from portal.db.engine import engine
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Portal",
        description="WhatsApp inbox sync server: message snapshots, live changes, Web Push",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from portal.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: portal.main:app)
app = create_app()
