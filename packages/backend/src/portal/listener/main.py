"""Listener entry point — run the change listener as its own process.

Learn: the API process runs the listener by default. Set
PORTAL_RUN_LISTENER=false there and run this instead to isolate push
fan-out from request handling.

Usage:
    portal-listener
    python -m portal.listener.main
"""

import asyncio
import logging
import signal

from portal.config import settings
from portal.db.engine import async_session_factory, engine
from portal.listener.change_listener import ChangeListener, ListenerConfig, asyncpg_dsn
from portal.realtime.pubsub import close_redis, init_redis
from portal.services.push_sender import sender_from_settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("portal.listener")


async def run():
    config = ListenerConfig(
        database_url=asyncpg_dsn(settings.database_url),
        channel=settings.change_channel,
    )
    listener = ChangeListener(config, sender_from_settings(), async_session_factory)

    try:
        await init_redis()
    except Exception as e:
        logger.warning("Redis unavailable, WebSocket republish disabled: %s", e)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    watch_task = asyncio.create_task(listener.run())
    try:
        await stop_event.wait()
    finally:
        await listener.stop()
        watch_task.cancel()
        await close_redis()
        await engine.dispose()
        logger.info("Listener exited. Stats: %s", listener.get_stats())


def main():
    asyncio.run(run())


if __name__ == "__main__":
    main()
