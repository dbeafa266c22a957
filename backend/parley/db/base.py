"""SQLAlchemy metadata registry import for Alembic."""

from parley.models import Conversation, Message
from parley.models.base import Base

__all__ = ["Base", "Conversation", "Message"]
