"""
Register-video endpoints (file-backed catalog variant).

Unlike the blob catalog, this list only contains what clients explicitly
register after uploading. Entries live in a JSON file on local disk.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ...core.videos.models import VideoEntry
from ...infrastructure.catalog.json_store import RepositoryError
from ..dependencies import RegistryRepositoryDep

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class RegisterVideoRequest(BaseModel):
    title: Optional[str] = None
    url: Optional[str] = None
    description: Optional[str] = None


class RegisteredVideoResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int = Field(description="Timestamp-derived id, increasing")
    title: str
    url: str
    description: str
    upload_date: str = Field(description="Registration time, ISO 8601")

    @classmethod
    def from_entry(cls, entry: VideoEntry) -> "RegisteredVideoResponse":
        return cls(
            id=int(entry.id),
            title=entry.title,
            url=entry.url,
            description=entry.description,
            upload_date=entry.upload_date_iso,
        )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid {field}: {first['msg']}"


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get(
    "",
    summary="List registered videos",
    responses={500: {"description": "Registry could not be read"}},
)
async def list_registered_videos(repository: RegistryRepositoryDep) -> JSONResponse:
    try:
        videos = repository.list_videos()
    except RepositoryError as e:
        logger.error("Failed to list registered videos", extra={"error": str(e)})
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to load video list")

    return JSONResponse(content={
        "videos": [
            RegisteredVideoResponse.from_entry(video).model_dump(by_alias=True)
            for video in videos
        ]
    })


@router.post(
    "",
    summary="Register an uploaded video",
    responses={
        400: {"description": "Missing title or url"},
        500: {"description": "Registry could not be written"},
    },
)
async def register_video(request: Request, repository: RegistryRepositoryDep) -> JSONResponse:
    """
    Prepend a video to the registry.

    title and url are required; description defaults to the upload time.
    """
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        return _error(status.HTTP_400_BAD_REQUEST, "Request body must be a JSON object")

    try:
        body = RegisterVideoRequest.model_validate(payload)
    except ValidationError as e:
        return _error(status.HTTP_400_BAD_REQUEST, _validation_message(e))

    title = (body.title or "").strip()
    url = (body.url or "").strip()
    if not title or not url:
        return _error(status.HTTP_400_BAD_REQUEST, "Title and url are required")

    try:
        video = repository.register(title=title, url=url, description=body.description)
    except RepositoryError as e:
        logger.error("Failed to register video", extra={"title": title, "error": str(e)})
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to save video")

    return JSONResponse(content={
        "success": True,
        "video": RegisteredVideoResponse.from_entry(video).model_dump(by_alias=True),
    })
