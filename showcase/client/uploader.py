"""
Client upload driver.

Same two-phase protocol the upload page runs in the browser, for scripts
and tests:

1. POST blob.generate-client-token to the authorization endpoint
2. Send the file straight to the store, as a multipart POST or a
   signed PUT depending on the upload target

The application server never sees the video bytes. Progress is reported
as a whole percentage that only ever goes up.

Usage:
    uploader = VideoUploader("http://localhost:8000/api/uploads")
    url = uploader.upload("holiday.mp4", on_progress=print)
"""

import logging
import mimetypes
import os
import threading
from pathlib import Path
from typing import IO, Any, Callable, Iterator, Optional, Union

import httpx

from ..core.videos.errors import (
    AuthorizationError,
    ClientValidationError,
    TransferError,
    UploadCancelled,
)
from ..core.videos.models import MAX_UPLOAD_BYTES

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

GENERATE_CLIENT_TOKEN = "blob.generate-client-token"
CHUNK_SIZE = 64 * 1024


class ProgressReader:
    """
    File wrapper that reports progress as httpx reads it.

    httpx streams multipart file fields by calling read() in chunks and
    sizes them with tell()/seek(), which are passed through.
    """

    def __init__(
        self,
        fileobj: IO[bytes],
        total: int,
        on_progress: Optional[ProgressCallback] = None,
        cancelled: Optional[threading.Event] = None,
    ) -> None:
        self._file = fileobj
        self._total = total
        self._on_progress = on_progress
        self._cancelled = cancelled or threading.Event()
        self._sent = 0
        self._reported = -1
        self.interrupted = False

    @property
    def percent(self) -> int:
        return max(self._reported, 0)

    def read(self, size: int = -1) -> bytes:
        if self._cancelled.is_set():
            self.interrupted = True
            raise UploadCancelled("Upload was cancelled")
        chunk = self._file.read(size)
        self._sent += len(chunk)
        self.report()
        return chunk

    def report(self) -> None:
        if self._total > 0:
            percent = round(self._sent * 100 / self._total)
        else:
            percent = 100 if self._sent else 0
        percent = min(percent, 100)
        # Never report a smaller value, even if httpx rewinds and re-reads
        if percent > self._reported:
            self._reported = percent
            if self._on_progress is not None:
                self._on_progress(percent)

    def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        """Raw body for a PUT upload."""
        while True:
            chunk = self.read(chunk_size)
            if not chunk:
                return
            yield chunk

    def tell(self) -> int:
        return self._file.tell()

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        position = self._file.seek(offset, whence)
        self._sent = position
        return position


class VideoUploader:
    """
    Uploads one video at a time through the token protocol.

    Pass an existing httpx.Client (a FastAPI TestClient works) to reuse
    connections or to drive an in-process app.
    """

    def __init__(
        self,
        handle_upload_url: str,
        client: Optional[httpx.Client] = None,
        max_file_size: int = MAX_UPLOAD_BYTES,
        user_id: Optional[str] = None,
    ) -> None:
        self._handle_upload_url = handle_upload_url
        self._client = client
        self._max_file_size = max_file_size
        self._user_id = user_id
        self._cancelled = threading.Event()

    def validate(self, filename: str, content_type: Optional[str], size: int) -> None:
        """
        Fail fast before any network call.

        The store's token constraints remain the authoritative check.
        """
        if not content_type or not content_type.startswith("video/"):
            raise ClientValidationError(f"{filename} is not a video file")
        if size > self._max_file_size:
            raise ClientValidationError(
                f"{filename} is larger than {self._max_file_size // (1024 * 1024)}MB"
            )

    def cancel(self) -> None:
        """Abort the in-flight transfer. The store keeps no partial object."""
        self._cancelled.set()

    def upload(
        self,
        source: Union[str, Path],
        content_type: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        client_payload: Optional[str] = None,
    ) -> str:
        """
        Upload a local file and return its public URL.

        Registering the URL in any secondary catalog is the caller's job.
        """
        path = Path(source)
        filename = path.name
        content_type = content_type or mimetypes.guess_type(filename)[0]
        size = path.stat().st_size

        self.validate(filename, content_type, size)
        self._cancelled.clear()

        client = self._client or httpx.Client(timeout=httpx.Timeout(30.0, write=None))
        try:
            token = self._request_token(client, filename, content_type, size, client_payload)
            with open(path, "rb") as f:
                return self._send(client, token, filename, content_type, f, size, on_progress)
        finally:
            if self._client is None:
                client.close()

    def _request_token(
        self,
        client: httpx.Client,
        filename: str,
        content_type: str,
        size: int,
        client_payload: Optional[str],
    ) -> dict[str, Any]:
        body = {
            "type": GENERATE_CLIENT_TOKEN,
            "payload": {
                "pathname": filename,
                "contentType": content_type,
                "size": size,
                "clientPayload": client_payload,
            },
        }
        headers = {"x-user-id": self._user_id} if self._user_id else {}

        try:
            response = client.post(self._handle_upload_url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise TransferError(f"Could not reach the upload service: {e}")

        if not response.is_success:
            raise AuthorizationError(_error_message(response, "Upload was not authorized"))

        return response.json()

    def _send(
        self,
        client: httpx.Client,
        token: dict[str, Any],
        filename: str,
        content_type: str,
        fileobj: IO[bytes],
        size: int,
        on_progress: Optional[ProgressCallback],
    ) -> str:
        upload = token["upload"]
        reader = ProgressReader(fileobj, size, on_progress, self._cancelled)
        reader.report()

        logger.info(
            "Uploading video",
            extra={"object_key": token["pathname"], "size_bytes": size}
        )

        try:
            if upload.get("method", "POST").upper() == "PUT":
                # The signed request pins the length, so no chunked encoding
                headers = {"Content-Length": str(size), **upload.get("headers", {})}
                response = client.put(upload["url"], content=reader.iter_chunks(), headers=headers)
            else:
                response = client.post(
                    upload["url"],
                    data=upload.get("fields", {}),
                    files={"file": (filename, reader, content_type)},
                )
        except UploadCancelled:
            logger.info("Upload cancelled", extra={"object_key": token["pathname"]})
            raise
        except httpx.HTTPError as e:
            raise TransferError(f"Upload failed, please retry: {e}")

        # An in-process server reads the body itself and answers for the
        # aborted request, so the cancellation never reaches us as an error
        if reader.interrupted:
            logger.info("Upload cancelled", extra={"object_key": token["pathname"]})
            raise UploadCancelled("Upload was cancelled")

        if 400 <= response.status_code < 500:
            raise AuthorizationError(_error_message(response, "The store rejected the upload"))
        if not response.is_success:
            raise TransferError(f"Upload failed, please retry (HTTP {response.status_code})")

        # Empty files finish at 0 otherwise
        if reader.percent < 100 and on_progress is not None:
            on_progress(100)

        try:
            return response.json().get("url") or token["url"]
        except ValueError:
            # S3 answers presigned uploads with an empty body
            return token["url"]


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        return response.json().get("error") or default
    except ValueError:
        return response.text or default
