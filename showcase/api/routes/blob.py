"""
Mock blob store endpoints.

Only active when R2_MOCK_MODE is on. They stand in for the store's own
upload and download endpoints so the full browser flow works locally:

- POST /upload: accept a file under a signed upload token, then deliver
  the completion notification in the background
- GET /objects/{pathname}: serve a stored object for playback

With a real R2 bucket both return 404; the browser talks to R2 directly.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, File, Form, HTTPException, UploadFile, status
from fastapi.responses import JSONResponse, Response

from ...core.videos.errors import AuthorizationError
from ...core.videos.models import utc
from ...infrastructure.storage.client import MockBlobStore, StorageError
from ..dependencies import BlobStoreDep, CompletionNotifierDep

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_mock_store(store) -> MockBlobStore:
    if not isinstance(store, MockBlobStore):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Blob endpoints are only available in mock mode",
        )
    return store


@router.post(
    "/upload",
    summary="Upload a file to the mock store",
    responses={403: {"description": "Token rejected or constraints violated"}},
)
async def upload_blob(
    token: Annotated[str, Form(description="Upload token from /api/uploads")],
    file: Annotated[UploadFile, File(description="The video file")],
    background_tasks: BackgroundTasks,
    store: BlobStoreDep,
    notifier: CompletionNotifierDep,
) -> JSONResponse:
    mock_store = _require_mock_store(store)

    data = await file.read()

    try:
        completion, callback_url = mock_store.accept_upload(token, file.content_type, data)
    except AuthorizationError as e:
        logger.warning(
            "Mock store rejected upload",
            extra={"upload_filename": file.filename, "reason": str(e)}
        )
        return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"error": str(e)})

    if callback_url:
        background_tasks.add_task(notifier.notify, callback_url, completion)

    blob = completion.blob
    return JSONResponse(content={
        "url": blob.url,
        "pathname": blob.pathname,
        "contentType": blob.content_type,
        "size": blob.size,
        "uploadedAt": utc(blob.uploaded_at).isoformat(),
    })


@router.get(
    "/objects/{pathname:path}",
    summary="Download an object from the mock store",
)
async def get_blob(pathname: str, store: BlobStoreDep) -> Response:
    mock_store = _require_mock_store(store)

    try:
        data, content_type = mock_store.read_object(pathname)
    except StorageError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Object not found")

    return Response(content=data, media_type=content_type or "application/octet-stream")
