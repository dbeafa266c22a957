"""Attachment upload route."""

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from parley.dependencies import get_attachment_store
from parley.schemas.attachment import AttachmentRead
from parley.schemas.common import ApiResponse
from parley.services.attachments import AttachmentStore
from parley.services.errors import AttachmentRejectedError

router = APIRouter()


@router.post("/uploads", response_model=ApiResponse[AttachmentRead], status_code=201)
async def upload_attachment(
    request: Request,
    filename: str | None = Query(None, max_length=255),
    store: AttachmentStore = Depends(get_attachment_store),
) -> ApiResponse[AttachmentRead]:
    """Store the raw request body as an attachment of the declared content type."""

    data = await request.body()
    try:
        stored = store.upload(data, request.headers.get("content-type", ""), filename=filename)
    except AttachmentRejectedError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ApiResponse(
        data=AttachmentRead(
            url=stored.url,
            filename=stored.filename,
            size_bytes=stored.size_bytes,
            kind=stored.resolved_kind,
        )
    )
