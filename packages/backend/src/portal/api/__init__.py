"""API route aggregation.

All routers registered here get mounted in main.py under /api. There is
no authentication layer; the server is meant to sit behind the same
private deployment as the inbox UI.
"""

from fastapi import APIRouter

from portal.api.health import router as health_router
from portal.api.messages import router as messages_router
from portal.api.push import router as push_router

api_router = APIRouter(prefix="/api")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(messages_router, tags=["messages"])
api_router.include_router(push_router, tags=["push"])
