"""Push Subscription Registry — durable store of push endpoints.

Learn: the endpoint URL is the primary key, so every operation is keyed
and idempotent:

- register: INSERT ... ON CONFLICT (endpoint) DO UPDATE — re-subscribing
  the same browser just refreshes its keys
- unregister: DELETE WHERE endpoint = ... — unknown endpoints are a no-op

Keyed deletes are what make concurrent fan-out passes safe: a pass that
prunes endpoint X can never remove endpoint Y.
"""

from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db.models import PushSubscription


class SubscriptionRegistry:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def register(self, endpoint: str, keys: Optional[dict] = None) -> None:
        stmt = insert(PushSubscription).values(endpoint=endpoint, keys=keys or {})
        stmt = stmt.on_conflict_do_update(
            index_elements=[PushSubscription.endpoint],
            set_={"keys": stmt.excluded["keys"], "updated_at": func.now()},
        )
        await self.db.execute(stmt)
        await self.db.commit()

    async def unregister(self, endpoint: str) -> bool:
        """Delete by endpoint. Returns True if a row was removed."""
        result = await self.db.execute(
            delete(PushSubscription).where(PushSubscription.endpoint == endpoint)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def get(self, endpoint: str) -> Optional[PushSubscription]:
        result = await self.db.execute(
            select(PushSubscription)
            .where(PushSubscription.endpoint == endpoint)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def list_all(self) -> list[PushSubscription]:
        result = await self.db.execute(
            select(PushSubscription)
            .order_by(PushSubscription.created_at, PushSubscription.endpoint)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.db.execute(select(func.count()).select_from(PushSubscription))
        return result.scalar_one()
