"""Message persistence — the writes that feed the change stream.

Learn: this service only touches the messages table. It never publishes
anything itself: the notify_message_change trigger turns every committed
write into a change event, so there is exactly one event source whether
the row came from this API or from the provider's inbound webhook writer.
"""

from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db.models import Message
from portal.schemas.message import MessageCreate


class MessageNotFoundError(Exception):
    pass


class MessageService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_messages(
        self, conversation_id: Optional[str] = None
    ) -> list[Message]:
        """Full snapshot, oldest first (id breaks created_at ties)."""
        q = select(Message)
        if conversation_id:
            q = q.where(
                or_(
                    Message.sender == conversation_id,
                    Message.recipient == conversation_id,
                )
            )
        q = q.order_by(Message.created_at, Message.id)
        result = await self.db.execute(q)
        return list(result.scalars().all())

    async def create_outgoing(self, body: MessageCreate) -> Message:
        """Record a message we sent. sender stays NULL for our own account."""
        message = Message(
            type=body.type,
            sender=None,
            recipient=body.to,
            text=body.text,
            media_url=body.media_url,
            mid=body.mid,
            reply_to_mid=body.reply_to_mid,
            is_reply="true" if body.reply_to_mid else "false",
        )
        self.db.add(message)
        await self.db.commit()
        await self.db.refresh(message)
        return message

    async def delete_message(self, message_id: int) -> None:
        message = await self.db.get(Message, message_id)
        if not message:
            raise MessageNotFoundError(f"Message {message_id} not found")
        await self.db.delete(message)
        await self.db.commit()
