"""Message ORM model."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parley.models.base import Base, IdMixin

if TYPE_CHECKING:
    from parley.models.conversation import Conversation


class Message(Base, IdMixin):
    """Stored conversation message."""

    __tablename__ = "messages"

    conversation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    attachment_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    attachment_kind: Mapped[str | None] = mapped_column(String(32), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

    conversation: Mapped[Conversation] = relationship(back_populates="messages")

    @property
    def order_key(self) -> tuple[datetime, int]:
        """Position of the message in conversation order."""

        return (self.timestamp, self.id)
