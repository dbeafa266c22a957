"""Conversation store services."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from parley.models.conversation import DEFAULT_CONVERSATION_TITLE, Conversation
from parley.models.message import Message
from parley.schemas.conversation import ConversationListItem, ConversationsListResponse
from parley.services.errors import ChatValidationError, NotFoundError


def create_conversation(db: Session, *, title: str | None = None) -> Conversation:
    """Persist an empty conversation."""

    now = datetime.now(timezone.utc)
    conversation = Conversation(
        title=(title or "").strip() or DEFAULT_CONVERSATION_TITLE,
        created_at=now,
        updated_at=now,
    )
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


def get_conversation(db: Session, conversation_id: str) -> Conversation:
    """Return one conversation or raise ``NotFoundError``."""

    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFoundError(f"Conversation {conversation_id} not found.")
    return conversation


def list_conversations(
    db: Session,
    *,
    limit: int,
    offset: int,
    query: str | None = None,
) -> ConversationsListResponse:
    """Return paginated conversations ordered by latest activity."""

    message_counts = (
        select(Message.conversation_id.label("conversation_id"), func.count(Message.id).label("message_count"))
        .group_by(Message.conversation_id)
        .subquery()
    )

    filter_term = (query or "").strip()
    base = select(Conversation.id)
    if filter_term:
        base = base.where(Conversation.title.ilike(f"%{filter_term}%"))
    total = int(db.scalar(select(func.count()).select_from(base.subquery())) or 0)

    stmt = (
        select(Conversation, func.coalesce(message_counts.c.message_count, 0).label("message_count"))
        .outerjoin(message_counts, message_counts.c.conversation_id == Conversation.id)
        .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
        .limit(limit)
        .offset(offset)
    )
    if filter_term:
        stmt = stmt.where(Conversation.title.ilike(f"%{filter_term}%"))

    items = [
        ConversationListItem(
            id=conversation.id,
            title=conversation.title,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
            message_count=int(message_count),
        )
        for conversation, message_count in db.execute(stmt).all()
    ]
    return ConversationsListResponse(items=items, total=total, limit=limit, offset=offset)


def rename_conversation(db: Session, conversation_id: str, title: str) -> Conversation:
    """Apply an explicit rename."""

    clean_title = title.strip()
    if not clean_title:
        raise ChatValidationError("Title cannot be empty.")
    conversation = get_conversation(db, conversation_id)
    conversation.title = clean_title
    conversation.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(conversation)
    return conversation


def delete_conversation(db: Session, conversation_id: str) -> bool:
    """Delete a conversation and all of its messages."""

    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        return False
    db.execute(delete(Message).where(Message.conversation_id == conversation_id))
    db.execute(delete(Conversation).where(Conversation.id == conversation_id))
    db.commit()
    return True


def derive_title(content: str, max_chars: int = 50) -> str:
    """Deterministic title from the first user message."""

    collapsed = " ".join(content.split())
    if not collapsed:
        return DEFAULT_CONVERSATION_TITLE
    if len(collapsed) <= max_chars:
        return collapsed
    return collapsed[:max_chars].rstrip() + "..."
