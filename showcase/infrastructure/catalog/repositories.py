"""
Repositories over the JSON document store.

- RegisteredVideoRepository: the file-backed catalog variant. Videos are
  registered explicitly by the uploader after a successful upload and
  listed newest first.
- UploadRecordRepository: durable side effect of completion
  notifications, upserted by pathname so redelivery is a no-op.
"""

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ...core.videos.models import (
    UploadCompletion,
    UploadRecord,
    VideoEntry,
    format_upload_time,
    utc,
)
from ...core.videos.uploads import user_id_from_token_payload
from .json_store import JsonDocumentStore

logger = logging.getLogger(__name__)

REGISTRY_FILE = "videos.json"
UPLOAD_RECORDS_FILE = "uploads.json"


def _parse_time(value: str) -> datetime:
    return utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


class RegisteredVideoRepository:
    """
    Registered videos, newest first.

    Ids are millisecond timestamps, bumped past the newest existing id
    when two registrations land in the same millisecond.
    """

    def __init__(self, store: JsonDocumentStore) -> None:
        self._store = store

    @classmethod
    def in_directory(cls, data_dir: str) -> "RegisteredVideoRepository":
        return cls(JsonDocumentStore(Path(data_dir) / REGISTRY_FILE))

    def list_videos(self) -> list[VideoEntry]:
        return [self._from_row(row) for row in self._store.read().items]

    def register(
        self,
        title: str,
        url: str,
        description: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> VideoEntry:
        """Prepend a new video and return it."""
        now = utc(now or datetime.now(timezone.utc))

        def prepend(items: list[dict[str, Any]]) -> VideoEntry:
            newest_id = max((int(row["id"]) for row in items), default=0)
            video = VideoEntry(
                id=max(int(time.time() * 1000), newest_id + 1),
                title=title,
                url=url,
                description=description or format_upload_time(now),
                upload_date=now,
            )
            items.insert(0, self._to_row(video))
            return video

        video, version = self._store.update(prepend)

        logger.info(
            "Registered video",
            extra={"video_id": video.id, "title": title, "version": version}
        )

        return video

    @staticmethod
    def _to_row(video: VideoEntry) -> dict[str, Any]:
        return {
            "id": video.id,
            "title": video.title,
            "url": video.url,
            "description": video.description,
            "uploadDate": video.upload_date_iso,
        }

    @staticmethod
    def _from_row(row: dict[str, Any]) -> VideoEntry:
        return VideoEntry(
            id=int(row["id"]),
            title=row["title"],
            url=row["url"],
            description=row.get("description", ""),
            upload_date=_parse_time(row["uploadDate"]),
        )


class UploadRecordRepository:
    """Completed uploads keyed by pathname."""

    def __init__(self, store: JsonDocumentStore) -> None:
        self._store = store

    @classmethod
    def in_directory(cls, data_dir: str) -> "UploadRecordRepository":
        return cls(JsonDocumentStore(Path(data_dir) / UPLOAD_RECORDS_FILE))

    def get(self, pathname: str) -> Optional[UploadRecord]:
        for row in self._store.read().items:
            if row["pathname"] == pathname:
                return self._from_row(row)
        return None

    def list_records(self) -> list[UploadRecord]:
        return [self._from_row(row) for row in self._store.read().items]

    def upsert(self, record: UploadRecord) -> bool:
        """
        Insert or replace the record for its pathname.

        Returns False when an identical record was already stored, in which
        case the file is left untouched.
        """
        row = self._to_row(record)

        def apply(items: list[dict[str, Any]]) -> bool:
            for index, existing in enumerate(items):
                if existing["pathname"] == record.pathname:
                    if existing == row:
                        return False
                    items[index] = row
                    return True
            items.append(row)
            return True

        changed, _ = self._store.update(apply)
        return changed

    async def record_completion(self, completion: UploadCompletion) -> None:
        """Completion handler: associate the finished object with its uploader."""
        blob = completion.blob
        created = self.upsert(UploadRecord(
            pathname=blob.pathname,
            url=blob.url,
            size=blob.size,
            uploaded_at=blob.uploaded_at,
            content_type=blob.content_type,
            token_payload=completion.token_payload,
            user_id=user_id_from_token_payload(completion.token_payload),
        ))

        logger.info(
            "Recorded upload completion",
            extra={"object_key": blob.pathname, "changed": created}
        )

    @staticmethod
    def _to_row(record: UploadRecord) -> dict[str, Any]:
        return {
            "pathname": record.pathname,
            "url": record.url,
            "size": record.size,
            "uploadedAt": utc(record.uploaded_at).isoformat(),
            "contentType": record.content_type,
            "tokenPayload": record.token_payload,
            "userId": record.user_id,
        }

    @staticmethod
    def _from_row(row: dict[str, Any]) -> UploadRecord:
        return UploadRecord(
            pathname=row["pathname"],
            url=row["url"],
            size=int(row["size"]),
            uploaded_at=_parse_time(row["uploadedAt"]),
            content_type=row.get("contentType"),
            token_payload=row.get("tokenPayload", ""),
            user_id=row.get("userId"),
        )
