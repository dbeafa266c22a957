"""Message request/response schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class MessageCreate(BaseModel):
    """Single message payload for a store append."""

    role: Literal["user", "assistant", "system"]
    content: str
    attachment_url: str | None = None
    attachment_kind: Literal["image", "document"] | None = None
    timestamp: datetime | None = None


class MessageRead(BaseModel):
    """Serialized message."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    conversation_id: str
    role: str
    content: str
    attachment_url: str | None = None
    attachment_kind: str | None = None
    timestamp: datetime


class MessageEditRequest(BaseModel):
    """New content for an edited user message."""

    content: str = Field(min_length=1)
