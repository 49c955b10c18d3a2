"""
Catalog derivation: StoredObject -> VideoEntry.

The gallery has no catalog of its own. Every query lists the store and
projects the result, so entries can never go stale. The projection is
pure; the service around it owns the degrade-on-failure policy.
"""

import logging
from dataclasses import dataclass, field
from posixpath import basename
from typing import Iterable, Optional, Protocol

from .errors import CatalogAccessError
from .models import VIDEO_EXTENSIONS, StoredObject, VideoEntry, format_upload_time

logger = logging.getLogger(__name__)

CATALOG_UNAVAILABLE_MESSAGE = "Video listing is temporarily unavailable"


class ObjectLister(Protocol):
    """Anything that can list every object in the store."""

    async def list_objects(self) -> list[StoredObject]:
        ...


def is_video_pathname(pathname: str) -> bool:
    """True if the pathname ends in a recognized video extension (any case)."""
    return pathname.lower().endswith(VIDEO_EXTENSIONS)


def title_from_pathname(pathname: str) -> str:
    """Final path segment with its last extension stripped."""
    name = basename(pathname)
    if "." in name:
        return name[: name.rindex(".")]
    return name


def to_video_entry(obj: StoredObject) -> VideoEntry:
    return VideoEntry(
        id=obj.pathname,
        title=title_from_pathname(obj.pathname),
        url=obj.url,
        description=format_upload_time(obj.uploaded_at),
        upload_date=obj.uploaded_at,
        size=obj.size,
    )


def build_catalog(objects: Iterable[StoredObject]) -> list[VideoEntry]:
    """
    Filter to videos, project, and order newest first.

    sorted() is stable with reverse=True, so entries uploaded at the same
    instant keep their listing order.
    """
    entries = [to_video_entry(obj) for obj in objects if is_video_pathname(obj.pathname)]
    return sorted(entries, key=lambda entry: entry.upload_date, reverse=True)


@dataclass
class CatalogListing:
    """
    Result of a catalog query.

    error is set only when the store could not be listed, so callers can
    tell "no videos" from "listing failed".
    """
    videos: list[VideoEntry] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.error is not None


class CatalogService:
    """Lists the store and builds the gallery catalog. Never mutates the store."""

    def __init__(self, lister: ObjectLister) -> None:
        self._lister = lister

    async def list_videos(self) -> CatalogListing:
        """
        Build the catalog from a full store listing.

        A listing failure degrades to an empty catalog plus a logged
        diagnostic instead of failing the gallery.
        """
        try:
            objects = await self._lister.list_objects()
        except Exception as e:
            failure = CatalogAccessError(f"Listing the blob store failed: {e}")
            logger.error(
                "Catalog listing failed, returning empty catalog",
                extra={"error": str(failure)},
                exc_info=e,
            )
            return CatalogListing(videos=[], error=CATALOG_UNAVAILABLE_MESSAGE)

        videos = build_catalog(objects)

        logger.debug(
            "Built video catalog",
            extra={"objects": len(objects), "videos": len(videos)},
        )

        return CatalogListing(videos=videos)
