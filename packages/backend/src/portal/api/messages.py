"""Messages API — the snapshot the clients poll, plus outgoing writes.

Learn: GET /api/messages is the resilience path. A client whose live
connection died still converges by polling it, because the store merges
snapshots without losing local sends.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db.engine import get_db
from portal.schemas.message import MessageCreate, MessageRow
from portal.services.message_service import MessageNotFoundError, MessageService

router = APIRouter(prefix="/messages")


@router.get("", response_model=list[MessageRow])
async def list_messages(
    conversation_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    """All messages, oldest first. Optionally one conversation only."""
    svc = MessageService(db)
    return await svc.list_messages(conversation_id)


@router.post("", response_model=MessageRow, status_code=201)
async def create_message(
    body: MessageCreate,
    db: AsyncSession = Depends(get_db),
):
    """Record an outgoing message after the provider accepted it."""
    svc = MessageService(db)
    return await svc.create_outgoing(body)


@router.delete("/{message_id}")
async def delete_message(
    message_id: int,
    db: AsyncSession = Depends(get_db),
):
    svc = MessageService(db)
    try:
        await svc.delete_message(message_id)
        return {"deleted": True}
    except MessageNotFoundError:
        raise HTTPException(status_code=404, detail="Message not found")
