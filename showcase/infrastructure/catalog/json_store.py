"""
Versioned JSON document on local disk.

The registry and the upload records are small lists that live in one
JSON file each. Concurrent writers must not lose each other's updates, so
every write is a read-modify-write performed while holding:
- a thread lock (requests served by the same process)
- an exclusive fcntl lock on a sidecar .lock file (other worker processes)

The new document is written to a temp file and moved into place with
os.replace, so readers see either the old or the new file, never a torn
one. Each update that changes the items bumps the version, and an
update that changes nothing leaves the file untouched. Callers can pass
expected_version to turn an update into a compare-and-swap.
"""

import copy
import fcntl
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Generator, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RepositoryError(Exception):
    """Raised when the backing file cannot be read or written."""
    pass


class ConcurrentUpdateError(RepositoryError):
    """Raised when expected_version no longer matches the stored version."""
    pass


@dataclass
class Document:
    version: int = 0
    items: list[dict[str, Any]] = field(default_factory=list)


class JsonDocumentStore:
    """A list of JSON objects in one file, updated atomically."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock_path = self._path.with_name(self._path.name + ".lock")
        self._thread_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> Document:
        """Current document. A missing file is an empty document."""
        if not self._path.exists():
            return Document()

        try:
            with open(self._path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(
                "Failed to read JSON document",
                extra={"path": str(self._path), "error": str(e)}
            )
            raise RepositoryError(f"Could not read {self._path.name}: {e}")

        # Plain lists are accepted for files written before versioning
        if isinstance(raw, list):
            return Document(version=0, items=raw)
        return Document(version=int(raw.get("version", 0)), items=list(raw.get("items", [])))

    def update(
        self,
        mutate: Callable[[list[dict[str, Any]]], T],
        expected_version: Optional[int] = None,
    ) -> tuple[T, int]:
        """
        Apply mutate() to the item list and persist the result atomically.

        mutate() changes the list in place and may return a value, which is
        handed back with the new version.
        """
        with self._exclusive():
            document = self.read()

            if expected_version is not None and document.version != expected_version:
                raise ConcurrentUpdateError(
                    f"Expected version {expected_version}, found {document.version}"
                )

            before = copy.deepcopy(document.items)
            result = mutate(document.items)
            if document.items != before:
                document.version += 1
                self._write(document)

        return result, document.version

    @contextmanager
    def _exclusive(self) -> Generator[None, None, None]:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RepositoryError(f"Could not create data directory: {e}")

        with self._thread_lock:
            with open(self._lock_path, "a") as lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _write(self, document: Document) -> None:
        payload = {"version": document.version, "items": document.items}
        fd, tmp_path = tempfile.mkstemp(
            dir=self._path.parent,
            prefix=f".{self._path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            logger.error(
                "Failed to write JSON document",
                extra={"path": str(self._path), "error": str(e)}
            )
            raise RepositoryError(f"Could not write {self._path.name}: {e}")
