"""
JSON-file persistence for the registry and upload records.

A single file per collection, updated with atomic read-modify-write.
"""

from .json_store import ConcurrentUpdateError, JsonDocumentStore, RepositoryError
from .repositories import RegisteredVideoRepository, UploadRecordRepository

__all__ = [
    "ConcurrentUpdateError",
    "JsonDocumentStore",
    "RegisteredVideoRepository",
    "RepositoryError",
    "UploadRecordRepository",
]
