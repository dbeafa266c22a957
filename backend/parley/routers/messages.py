"""Single-message routes."""

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.orm import Session

from parley.db.dependencies import get_db
from parley.dependencies import get_chat_runtime
from parley.schemas.common import ApiResponse, DeleteResult
from parley.services.chat_turns import ChatRuntime, remove_message
from parley.services.errors import NotFoundError, TurnInProgressError

router = APIRouter()


@router.delete("/messages/{message_id}", response_model=ApiResponse[DeleteResult])
def delete_message_route(
    message_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> ApiResponse[DeleteResult]:
    """Delete one message row unless its conversation has a reply in flight."""

    try:
        remove_message(db, runtime, message_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="Message not found") from exc
    except TurnInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return ApiResponse(data=DeleteResult(id=message_id, deleted=True))
