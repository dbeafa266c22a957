"""Streamed chat turn routes: submit, edit and regenerate."""

from collections.abc import Iterator

from fastapi import APIRouter, Depends, HTTPException, Path
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from starlette.background import BackgroundTask

from parley.db.dependencies import get_db
from parley.dependencies import get_chat_runtime
from parley.schemas.chat import ChatTurnRequest
from parley.schemas.message import MessageEditRequest
from parley.services.chat_turns import (
    ChatRuntime,
    ChatTurn,
    TurnCancelled,
    TurnCommitted,
    TurnFailed,
    start_chat_turn,
    start_edit_turn,
    start_regenerate_turn,
)
from parley.services.errors import ChatError, ChatValidationError, NotFoundError, TurnInProgressError
from parley.streaming.framing import (
    ERROR_TAG,
    FINISH_MESSAGE_TAG,
    TEXT_TAG,
    SideChannelEvent,
    TextDelta,
    encode_record,
)

router = APIRouter(prefix="/conversations/{conversation_id}")

DATA_STREAM_HEADERS = {"x-vercel-ai-data-stream": "v1"}


@router.post("/chat")
def submit_chat_turn(
    payload: ChatTurnRequest,
    conversation_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> StreamingResponse:
    """Send a user message and stream the assistant reply."""

    try:
        turn = start_chat_turn(
            db,
            runtime,
            conversation_id,
            content=payload.content,
            attachments=payload.attachments,
        )
    except ChatError as exc:
        raise _http_error(exc) from exc
    return _streaming_response(turn)


@router.put("/messages/{message_id}")
def edit_message_and_regenerate(
    payload: MessageEditRequest,
    conversation_id: str = Path(..., min_length=1),
    message_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> StreamingResponse:
    """Replace a user message, drop everything after it and stream a new reply."""

    try:
        turn = start_edit_turn(db, runtime, conversation_id, message_id, content=payload.content)
    except ChatError as exc:
        raise _http_error(exc) from exc
    return _streaming_response(turn)


@router.post("/regenerate")
def regenerate_reply(
    conversation_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> StreamingResponse:
    """Replace the latest assistant reply with a freshly streamed one."""

    try:
        turn = start_regenerate_turn(db, runtime, conversation_id)
    except ChatError as exc:
        raise _http_error(exc) from exc
    return _streaming_response(turn)


def _streaming_response(turn: ChatTurn) -> StreamingResponse:
    return StreamingResponse(
        _encode_turn(turn),
        media_type="text/plain; charset=utf-8",
        headers=DATA_STREAM_HEADERS,
        background=BackgroundTask(turn.close),
    )


def _encode_turn(turn: ChatTurn) -> Iterator[bytes]:
    for event in turn.events():
        if isinstance(event, TextDelta):
            yield encode_record(TEXT_TAG, event.text)
        elif isinstance(event, SideChannelEvent):
            if event.tag != FINISH_MESSAGE_TAG:
                yield encode_record(event.tag, event.payload)
        elif isinstance(event, TurnCommitted):
            yield encode_record(
                FINISH_MESSAGE_TAG,
                {
                    "finishReason": "stop",
                    "conversationId": event.conversation_id,
                    "messageId": event.message.id,
                },
            )
        elif isinstance(event, TurnFailed):
            yield encode_record(ERROR_TAG, event.error)
        elif isinstance(event, TurnCancelled):
            return


def _http_error(exc: ChatError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, TurnInProgressError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ChatValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))
