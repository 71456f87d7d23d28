"""WebSocket endpoint — live change events for sync clients.

Learn: each client holds one connection to /ws/messages (its process-wide
ChangeEventBridge). The handler:
1. Subscribes to the Redis change channel
2. Forwards every change payload verbatim
3. Answers {"type": "ping"} with {"type": "pong"} for keepalive

No filtering happens here; clients ingest idempotently.
"""

import asyncio
import json

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from portal.config import settings
from portal.realtime.pubsub import get_redis, redis_available

logger = structlog.get_logger()
router = APIRouter()


@router.websocket("/ws/messages")
async def messages_websocket(websocket: WebSocket):
    if not redis_available():
        # No live stream without Redis; the client falls back to polling.
        await websocket.close(code=1013, reason="Live updates unavailable")
        return

    await websocket.accept()

    pubsub = get_redis().pubsub()
    await pubsub.subscribe(settings.redis_channel)
    logger.info("ws.connected", client=str(websocket.client))

    async def redis_listener():
        try:
            async for message in pubsub.listen():
                if message["type"] == "message":
                    await websocket.send_text(message["data"])
        except asyncio.CancelledError:
            pass

    async def client_listener():
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    msg = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if isinstance(msg, dict) and msg.get("type") == "ping":
                    await websocket.send_text(json.dumps({"type": "pong"}))
        except (WebSocketDisconnect, asyncio.CancelledError):
            pass

    redis_task = asyncio.create_task(redis_listener())
    client_task = asyncio.create_task(client_listener())

    try:
        done, pending = await asyncio.wait(
            [redis_task, client_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
    finally:
        await pubsub.unsubscribe(settings.redis_channel)
        await pubsub.aclose()
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
        logger.info("ws.disconnected", client=str(websocket.client))
