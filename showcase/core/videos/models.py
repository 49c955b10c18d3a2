"""
Domain models for the video showcase.

These models describe what the store holds and what the gallery shows.
They have no dependencies on FastAPI, boto3 or the JSON files, so the
catalog rules can be exercised with plain objects.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union

# Upload policy
ALLOWED_CONTENT_TYPES: tuple[str, ...] = (
    "video/mp4",
    "video/webm",
    "video/quicktime",
    "video/x-msvideo",
    "video/avi",
)
MAX_UPLOAD_BYTES = 500 * 1024 * 1024

# Catalog policy
VIDEO_EXTENSIONS: tuple[str, ...] = (
    ".mp4",
    ".mov",
    ".webm",
    ".avi",
    ".mkv",
    ".flv",
    ".wmv",
    ".m4v",
)


def utc(value: datetime) -> datetime:
    """Normalize a datetime to timezone-aware UTC. Naive values are assumed UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_upload_time(value: datetime) -> str:
    """Human-readable upload time, e.g. 'Uploaded on Oct 17, 2026 at 14:03 UTC'."""
    value = utc(value)
    return f"Uploaded on {value.strftime('%b')} {value.day}, {value.year} at {value.strftime('%H:%M')} UTC"


@dataclass(frozen=True)
class StoredObject:
    """
    An object held by the blob store.

    Frozen because stored objects are immutable once the store has
    finalized them. The pathname is the identity.
    """
    pathname: str
    url: str
    size: int
    uploaded_at: datetime
    content_type: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.pathname:
            raise ValueError("Stored object pathname cannot be empty")
        if self.size < 0:
            raise ValueError("Stored object size cannot be negative")
        object.__setattr__(self, "uploaded_at", utc(self.uploaded_at))


@dataclass(frozen=True)
class VideoEntry:
    """
    A display record for the gallery.

    Never persisted on its own. The blob catalog recomputes entries from
    StoredObjects on every query; the registry variant stores them with
    integer ids.
    """
    id: Union[str, int]
    title: str
    url: str
    description: str
    upload_date: datetime
    size: Optional[int] = None

    @property
    def upload_date_iso(self) -> str:
        return utc(self.upload_date).isoformat()


@dataclass(frozen=True)
class UploadGrant:
    """
    Constraints a store must enforce for one upload.

    Built by the authorizer, turned into a store-specific UploadToken by
    the blob store.
    """
    pathname: str
    content_type: str
    allowed_content_types: tuple[str, ...] = ALLOWED_CONTENT_TYPES
    max_file_size: int = MAX_UPLOAD_BYTES
    add_random_suffix: bool = True
    token_payload: str = ""
    callback_url: Optional[str] = None
    valid_until: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # Declared size in bytes. Stores that sign an exact length need it.
    content_length: Optional[int] = None


@dataclass(frozen=True)
class UploadToken:
    """
    An issued upload authorization.

    upload_method and upload_url say where the client sends the bytes.
    A POST target is a multipart form: upload_fields go along with the
    file. A PUT target takes the raw bytes with upload_headers set.
    url is where the object will be readable once the upload lands.
    """
    grant: UploadGrant
    url: str
    upload_url: str
    upload_fields: dict[str, str] = field(default_factory=dict)
    upload_method: str = "POST"
    upload_headers: dict[str, str] = field(default_factory=dict)

    @property
    def pathname(self) -> str:
        return self.grant.pathname


@dataclass(frozen=True)
class UploadCompletion:
    """What the store reports once an upload is finalized."""
    blob: StoredObject
    token_payload: str = ""


@dataclass
class UploadRecord:
    """
    Durable trace of a completed upload, keyed by pathname.

    Written by the completion side effect. Re-applying the same completion
    yields an equal record.
    """
    pathname: str
    url: str
    size: int
    uploaded_at: datetime
    content_type: Optional[str] = None
    token_payload: str = ""
    user_id: Optional[str] = None
