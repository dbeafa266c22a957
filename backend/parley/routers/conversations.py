"""Conversation CRUD routes."""

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session

from parley.db.dependencies import get_db
from parley.dependencies import get_chat_runtime
from parley.schemas.common import ApiResponse, DeleteResult
from parley.schemas.conversation import (
    ConversationCreateRequest,
    ConversationRead,
    ConversationRenameRequest,
    ConversationsListResponse,
)
from parley.schemas.message import MessageRead
from parley.services.chat_turns import ChatRuntime, remove_conversation
from parley.services.conversations import (
    create_conversation,
    get_conversation,
    list_conversations,
    rename_conversation,
)
from parley.services.errors import ChatValidationError, NotFoundError, TurnInProgressError
from parley.services.messages import list_messages

router = APIRouter(prefix="/conversations")


@router.get("", response_model=ApiResponse[ConversationsListResponse])
def get_conversations(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    q: str | None = Query(None),
    db: Session = Depends(get_db),
) -> ApiResponse[ConversationsListResponse]:
    """List conversations by latest activity."""

    return ApiResponse(data=list_conversations(db, limit=limit, offset=offset, query=q))


@router.post("", response_model=ApiResponse[ConversationRead], status_code=201)
def post_conversation(
    payload: ConversationCreateRequest | None = None,
    db: Session = Depends(get_db),
) -> ApiResponse[ConversationRead]:
    """Start a new, empty conversation."""

    conversation = create_conversation(db, title=payload.title if payload else None)
    return ApiResponse(data=ConversationRead.model_validate(conversation))


@router.patch("/{conversation_id}", response_model=ApiResponse[ConversationRead])
def patch_conversation(
    payload: ConversationRenameRequest,
    conversation_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[ConversationRead]:
    """Rename a conversation."""

    try:
        conversation = rename_conversation(db, conversation_id, payload.title)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ChatValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ApiResponse(data=ConversationRead.model_validate(conversation))


@router.delete("/{conversation_id}", response_model=ApiResponse[DeleteResult])
def delete_conversation_route(
    conversation_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> ApiResponse[DeleteResult]:
    """Delete a conversation and its messages unless a reply is in flight."""

    try:
        remove_conversation(db, runtime, conversation_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="Conversation not found") from exc
    except TurnInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return ApiResponse(data=DeleteResult(id=conversation_id, deleted=True))


@router.get("/{conversation_id}/messages", response_model=ApiResponse[list[MessageRead]])
def get_messages(
    conversation_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[list[MessageRead]]:
    """List messages for a conversation in order."""

    try:
        get_conversation(db, conversation_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    records = list_messages(db, conversation_id)
    return ApiResponse(data=[MessageRead.model_validate(message) for message in records])
