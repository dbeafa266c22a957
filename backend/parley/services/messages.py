"""Message store services.

Helpers that take part in a chat turn commit (``append_message``,
``delete_messages_after``, ``update_message_content``) only flush; the caller owns
the transaction so a turn's writes land together or not at all.
"""

from datetime import datetime, timezone

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.orm import Session

from parley.models.message import Message
from parley.schemas.message import MessageCreate
from parley.services.errors import NotFoundError


def list_messages(db: Session, conversation_id: str) -> list[Message]:
    """Return messages for a conversation ordered deterministically."""

    stmt = (
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.timestamp.asc(), Message.id.asc())
    )
    return list(db.scalars(stmt).all())


def count_messages(db: Session, conversation_id: str) -> int:
    return int(
        db.scalar(select(func.count(Message.id)).where(Message.conversation_id == conversation_id)) or 0
    )


def get_message(db: Session, conversation_id: str, message_id: int) -> Message:
    """Return one message of a conversation or raise ``NotFoundError``."""

    message = db.scalar(
        select(Message).where(Message.id == message_id, Message.conversation_id == conversation_id)
    )
    if message is None:
        raise NotFoundError(f"Message {message_id} not found in conversation {conversation_id}.")
    return message


def find_message(db: Session, message_id: int) -> Message | None:
    return db.get(Message, message_id)


def append_message(db: Session, conversation_id: str, message_input: MessageCreate) -> Message:
    """Stage one message for insertion. Caller commits."""

    message = Message(
        conversation_id=conversation_id,
        role=message_input.role,
        content=message_input.content,
        attachment_url=message_input.attachment_url,
        attachment_kind=message_input.attachment_kind,
        timestamp=message_input.timestamp or datetime.now(timezone.utc),
    )
    db.add(message)
    db.flush()
    return message


def delete_messages_after(db: Session, conversation_id: str, order_key: tuple[datetime, int]) -> int:
    """Delete every message ordered after ``order_key``. Caller commits."""

    timestamp, message_id = order_key
    result = db.execute(
        delete(Message)
        .where(Message.conversation_id == conversation_id)
        .where(
            or_(
                Message.timestamp > timestamp,
                and_(Message.timestamp == timestamp, Message.id > message_id),
            )
        )
        .execution_options(synchronize_session="fetch")
    )
    return int(result.rowcount or 0)


def delete_messages_from(db: Session, conversation_id: str, order_key: tuple[datetime, int]) -> int:
    """Delete the message at ``order_key`` and everything after it. Caller commits."""

    timestamp, message_id = order_key
    result = db.execute(
        delete(Message)
        .where(Message.conversation_id == conversation_id)
        .where(
            or_(
                Message.timestamp > timestamp,
                and_(Message.timestamp == timestamp, Message.id >= message_id),
            )
        )
        .execution_options(synchronize_session="fetch")
    )
    return int(result.rowcount or 0)


def update_message_content(db: Session, message_id: int, content: str) -> Message:
    """Replace message content keeping its identity and position. Caller commits."""

    message = db.get(Message, message_id)
    if message is None:
        raise NotFoundError(f"Message {message_id} not found.")
    message.content = content
    db.flush()
    return message


def delete_message(db: Session, message_id: int) -> bool:
    """Delete one message."""

    message = db.get(Message, message_id)
    if message is None:
        return False
    db.delete(message)
    db.commit()
    return True
