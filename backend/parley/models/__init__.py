"""ORM models package exports."""

from parley.models.conversation import Conversation
from parley.models.message import Message

__all__ = ["Conversation", "Message"]
