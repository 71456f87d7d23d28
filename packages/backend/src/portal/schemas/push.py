"""Pydantic schemas for Web Push subscriptions.

Learn: endpoint is optional at the schema level on purpose so a missing
endpoint is answered with 400 by the route (the browser contract), not
with FastAPI's generic 422.
"""

from typing import Optional

from pydantic import BaseModel, Field


class SubscribeBody(BaseModel):
    endpoint: Optional[str] = None
    keys: dict = Field(default_factory=dict)


class UnsubscribeBody(BaseModel):
    endpoint: Optional[str] = None


class PushPayload(BaseModel):
    title: str
    body: str
    data: dict = Field(default_factory=dict)


class VapidKeyRead(BaseModel):
    publicKey: str


class PushAck(BaseModel):
    success: bool
    message: Optional[str] = None
