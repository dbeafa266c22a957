"""Schemas for streamed chat turn endpoints."""

from typing import Literal

from pydantic import BaseModel, Field, model_validator


class AttachmentReference(BaseModel):
    """Previously uploaded file attached to the next user turn."""

    url: str = Field(min_length=1)
    kind: Literal["image", "document"] = "image"


class ChatTurnRequest(BaseModel):
    """Request payload for one submitted chat turn."""

    content: str = ""
    attachments: list[AttachmentReference] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_non_empty_turn(self) -> "ChatTurnRequest":
        if not self.content.strip() and not self.attachments:
            raise ValueError("Either content or at least one attachment must be provided.")
        return self
