"""Pydantic schemas for messages.

Learn: MessageRow is the wire shape of one messages row. The same model
reads ORM objects (from_attributes), change-event payloads (row_to_json
output, keyed "from"/"to") and API responses on the client side, so the
server and the sync library agree on one definition.
"""

import re
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

ContentType = Literal["text", "image", "audio", "video"]

_PHONE_RE = re.compile(r"^\d+$")


def is_phone(value: Optional[str]) -> bool:
    return bool(value) and bool(_PHONE_RE.match(value))


class MessageRow(BaseModel):
    id: int
    type: ContentType = "text"
    sender: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("from", "sender"),
        serialization_alias="from",
    )
    recipient: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("to", "recipient"),
        serialization_alias="to",
    )
    text: Optional[str] = None
    media_url: Optional[str] = None
    is_reply: Optional[str] = None
    reply_to_mid: Optional[str] = None
    mid: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True, "populate_by_name": True}

    @field_validator("created_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        # Naive and aware timestamps must stay comparable when sorting.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def conversation_id(self) -> Optional[str]:
        """The contact's phone number: "from" when incoming, else "to"."""
        if is_phone(self.sender):
            return self.sender
        if is_phone(self.recipient):
            return self.recipient
        return None

    @property
    def direction(self) -> Literal["incoming", "outgoing"]:
        return "incoming" if is_phone(self.sender) else "outgoing"


class MessageCreate(BaseModel):
    """An outgoing message to record after the provider accepted it.

    mid is the correlation key. Clients send the same key they put on
    their optimistic record so the committed row replaces it cleanly.
    """

    to: str = Field(..., pattern=r"^\d+$")
    type: ContentType = "text"
    text: Optional[str] = None
    media_url: Optional[str] = None
    mid: Optional[str] = None
    reply_to_mid: Optional[str] = None
