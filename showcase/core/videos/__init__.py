"""
Upload-and-catalog workflow.

Contains the domain models, the catalog projection and the upload rules.
"""

from .catalog import CatalogListing, CatalogService, build_catalog, to_video_entry
from .errors import (
    AuthorizationError,
    CatalogAccessError,
    ClientValidationError,
    PersistenceCallbackError,
    ShowcaseError,
    TransferError,
    UploadCancelled,
)
from .models import (
    ALLOWED_CONTENT_TYPES,
    MAX_UPLOAD_BYTES,
    VIDEO_EXTENSIONS,
    StoredObject,
    UploadCompletion,
    UploadGrant,
    UploadRecord,
    UploadToken,
    VideoEntry,
)
from .uploads import UploadAuthorizer, UploadPolicy, UploadRequest

__all__ = [
    "ALLOWED_CONTENT_TYPES",
    "MAX_UPLOAD_BYTES",
    "VIDEO_EXTENSIONS",
    "AuthorizationError",
    "CatalogAccessError",
    "CatalogListing",
    "CatalogService",
    "ClientValidationError",
    "PersistenceCallbackError",
    "ShowcaseError",
    "StoredObject",
    "TransferError",
    "UploadAuthorizer",
    "UploadCancelled",
    "UploadCompletion",
    "UploadGrant",
    "UploadPolicy",
    "UploadRecord",
    "UploadRequest",
    "UploadToken",
    "VideoEntry",
    "build_catalog",
    "to_video_entry",
]
