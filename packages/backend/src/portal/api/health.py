"""Health check endpoint.

Learn: reports Postgres and Redis separately. Redis being down only
degrades live updates (clients keep polling), so the server still answers.
"""

from fastapi import APIRouter
from sqlalchemy import text

from portal import __version__
from portal.db.engine import engine
from portal.realtime.pubsub import get_redis, redis_available

router = APIRouter()


@router.get("/health")
async def health_check():
    checks = {"server": "ok", "version": __version__}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["postgres"] = "ok"
    except Exception as e:
        checks["postgres"] = f"error: {e}"

    if redis_available():
        try:
            await get_redis().ping()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {e}"
    else:
        checks["redis"] = "not connected"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    return {"status": status, **checks}
