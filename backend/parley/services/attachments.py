"""Attachment validation and storage."""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from parley.config import Settings, get_settings
from parley.services.errors import AttachmentRejectedError

logger = logging.getLogger(__name__)

MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024
ALLOWED_ATTACHMENT_TYPES = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/pdf",
        "text/plain",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }
)

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "text/plain": ".txt",
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
}


@dataclass(slots=True)
class StoredAttachment:
    """Result of a successful upload."""

    url: str
    size_bytes: int
    resolved_kind: str
    filename: str | None = None


class AttachmentStore(Protocol):
    """Binary attachment storage collaborator."""

    def upload(self, data: bytes, declared_type: str, *, filename: str | None = None) -> StoredAttachment:
        """Store ``data`` and return where it can be fetched from."""


def normalize_content_type(declared_type: str | None) -> str:
    return (declared_type or "").split(";", 1)[0].strip().lower()


def validate_attachment(data: bytes, declared_type: str, *, max_bytes: int = MAX_ATTACHMENT_BYTES) -> str:
    """Return the resolved kind (``image`` or ``document``) or reject the payload."""

    content_type = normalize_content_type(declared_type)
    if not data:
        raise AttachmentRejectedError("No file provided.")
    if len(data) > max_bytes:
        raise AttachmentRejectedError(f"File too large: {len(data)} bytes exceeds {max_bytes}.")
    if content_type not in ALLOWED_ATTACHMENT_TYPES:
        raise AttachmentRejectedError(f"File type not supported: {content_type or 'unknown'}.")
    return "image" if content_type.startswith("image/") else "document"


class LocalAttachmentStore:
    """Stores attachments on the local filesystem under a public URL prefix."""

    def __init__(self, root: Path | str, *, base_url: str = "/uploads", max_bytes: int = MAX_ATTACHMENT_BYTES) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.max_bytes = max_bytes

    def upload(self, data: bytes, declared_type: str, *, filename: str | None = None) -> StoredAttachment:
        kind = validate_attachment(data, declared_type, max_bytes=self.max_bytes)
        content_type = normalize_content_type(declared_type)
        extension = _EXTENSIONS.get(content_type) or mimetypes.guess_extension(content_type) or ""
        stored_name = f"{uuid4().hex}{extension}"

        self.root.mkdir(parents=True, exist_ok=True)
        (self.root / stored_name).write_bytes(data)
        logger.info(
            "attachments.stored name=%s kind=%s size_bytes=%d",
            stored_name,
            kind,
            len(data),
        )
        return StoredAttachment(
            url=f"{self.base_url}/{stored_name}",
            size_bytes=len(data),
            resolved_kind=kind,
            filename=filename,
        )


def get_default_attachment_store(settings: Settings | None = None) -> AttachmentStore:
    settings = settings or get_settings()
    return LocalAttachmentStore(
        settings.upload_dir,
        base_url=settings.upload_base_url,
        max_bytes=settings.max_upload_bytes,
    )
