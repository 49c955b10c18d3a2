"""
Catalog query endpoint.

Lists every object in the blob store and returns the videos among them,
newest first. There is no catalog table: each request recomputes the
entries from the store listing.
"""

import logging
from typing import Optional

from fastapi import APIRouter, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ...core.videos.models import VideoEntry
from ..dependencies import CatalogServiceDep

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Response Models
# ---------------------------------------------------------------------------

class VideoEntryResponse(BaseModel):
    """A gallery entry derived from one stored object."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(description="Object pathname")
    title: str = Field(description="File name without extension")
    url: str = Field(description="Public playback URL")
    description: str = Field(description="Human-readable upload time")
    upload_date: str = Field(description="Upload time, ISO 8601")
    size: int = Field(description="Size in bytes")

    @classmethod
    def from_entry(cls, entry: VideoEntry) -> "VideoEntryResponse":
        return cls(
            id=str(entry.id),
            title=entry.title,
            url=entry.url,
            description=entry.description,
            upload_date=entry.upload_date_iso,
            size=entry.size or 0,
        )


class CatalogResponse(BaseModel):
    videos: list[VideoEntryResponse] = Field(description="Videos, newest first")
    error: Optional[str] = Field(
        default=None,
        description="Set when the store could not be listed; videos is then empty",
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=CatalogResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    summary="List uploaded videos",
    description="Lists the blob store and returns recognized video files, newest first.",
)
async def list_videos(catalog: CatalogServiceDep) -> CatalogResponse:
    """
    Return the current catalog.

    A store failure still answers 200 so the gallery renders, but with an
    empty list and an `error` message instead of pretending there are no
    videos.
    """
    listing = await catalog.list_videos()

    return CatalogResponse(
        videos=[VideoEntryResponse.from_entry(entry) for entry in listing.videos],
        error=listing.error,
    )
