"""Conversation request/response schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ConversationCreateRequest(BaseModel):
    """Optional explicit title for a new conversation."""

    title: str | None = Field(default=None, min_length=1, max_length=255)


class ConversationRenameRequest(BaseModel):
    """Explicit rename payload."""

    title: str = Field(min_length=1, max_length=255)


class ConversationRead(BaseModel):
    """Serialized conversation."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    created_at: datetime
    updated_at: datetime


class ConversationListItem(ConversationRead):
    """Conversation list row with message counter."""

    message_count: int


class ConversationsListResponse(BaseModel):
    """Paginated conversation list payload."""

    items: list[ConversationListItem]
    total: int
    limit: int
    offset: int
