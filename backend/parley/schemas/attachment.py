"""Attachment upload response schema."""

from pydantic import BaseModel


class AttachmentRead(BaseModel):
    """Stored attachment metadata."""

    url: str
    filename: str | None = None
    size_bytes: int
    kind: str
