"""
Unit tests for the client upload driver.

Both the authorization endpoint and the store are played by an
httpx.MockTransport, which reads the multipart body just like a real
server would.
"""

import io
import json
import threading

import httpx
import pytest

from showcase.client.uploader import GENERATE_CLIENT_TOKEN, ProgressReader, VideoUploader
from showcase.core.videos.errors import (
    AuthorizationError,
    ClientValidationError,
    TransferError,
    UploadCancelled,
)

HANDLE_UPLOAD_URL = "http://app.test/api/uploads"
STORE_URL = "http://store.test/upload"
VIDEO_URL = "http://store.test/objects/clip-abc.mp4"


class FakeServices:
    """Token endpoint plus store, with scriptable store status."""

    def __init__(self, store_status: int = 200, token_status: int = 200, upload: dict = None):
        self.store_status = store_status
        self.token_status = token_status
        self.upload = upload or {"url": STORE_URL, "fields": {"token": "signed"}}
        self.token_requests: list[httpx.Request] = []
        self.uploads: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == HANDLE_UPLOAD_URL:
            self.token_requests.append(request)
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "Content type text/plain is not allowed"})
            body = json.loads(request.content)
            return httpx.Response(200, json={
                "type": GENERATE_CLIENT_TOKEN,
                "pathname": "clip-abc.mp4",
                "url": VIDEO_URL,
                "upload": self.upload,
                "contentType": body["payload"]["contentType"],
                "validUntil": 0,
            })

        self.uploads.append(request)
        if self.store_status == 204:
            return httpx.Response(204)
        if self.store_status != 200:
            return httpx.Response(self.store_status, json={"error": "Upload token has expired"})
        if request.method == "PUT":
            return httpx.Response(200)
        return httpx.Response(200, json={"url": VIDEO_URL, "pathname": "clip-abc.mp4"})


def uploader_for(services, **kwargs) -> VideoUploader:
    client = httpx.Client(transport=httpx.MockTransport(services))
    return VideoUploader(HANDLE_UPLOAD_URL, client=client, **kwargs)


@pytest.fixture
def video_file(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"\x00" * 200_000)
    return path


# ---------------------------------------------------------------------------
# ProgressReader
# ---------------------------------------------------------------------------

class TestProgressReader:
    """Tests for monotonic progress reporting."""

    def test_reports_whole_percentages(self):
        reported = []
        reader = ProgressReader(io.BytesIO(b"x" * 1000), 1000, reported.append)

        while reader.read(100):
            pass

        assert reported == [10, 20, 30, 40, 50, 60, 70, 80, 90, 100]

    def test_rewind_never_reports_less(self):
        reported = []
        reader = ProgressReader(io.BytesIO(b"x" * 1000), 1000, reported.append)

        reader.read(500)
        reader.seek(0)
        reader.read(100)
        reader.read()

        assert reported == [50, 100]
        assert reported == sorted(reported)

    def test_size_probe_passes_through(self):
        reader = ProgressReader(io.BytesIO(b"x" * 42), 42)

        assert reader.seek(0, 2) == 42
        assert reader.tell() == 42
        reader.seek(0)
        assert reader.read() == b"x" * 42

    def test_cancelled_read_raises(self):
        cancelled = threading.Event()
        reader = ProgressReader(io.BytesIO(b"x" * 10), 10, cancelled=cancelled)
        reader.read(5)

        cancelled.set()

        with pytest.raises(UploadCancelled):
            reader.read(5)


# ---------------------------------------------------------------------------
# Local validation
# ---------------------------------------------------------------------------

class TestValidate:
    """Rejections that happen before any network call."""

    @pytest.fixture
    def uploader(self):
        def refuse(request):
            raise AssertionError("no request expected")
        return uploader_for(refuse, max_file_size=1000)

    def test_rejects_non_video(self, uploader, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("hello")

        with pytest.raises(ClientValidationError, match="not a video"):
            uploader.upload(path)

    def test_rejects_oversized_file(self, uploader, tmp_path):
        path = tmp_path / "big.mp4"
        path.write_bytes(b"x" * 1001)

        with pytest.raises(ClientValidationError, match="larger than"):
            uploader.upload(path)

    def test_accepts_file_at_limit(self, uploader):
        uploader.validate("clip.mp4", "video/mp4", 1000)


# ---------------------------------------------------------------------------
# Upload protocol
# ---------------------------------------------------------------------------

class TestUpload:
    """Tests for the token-then-transfer flow."""

    def test_returns_public_url(self, video_file):
        services = FakeServices()

        url = uploader_for(services).upload(video_file)

        assert url == VIDEO_URL
        assert len(services.token_requests) == 1
        assert len(services.uploads) == 1

    def test_token_request_declares_file(self, video_file):
        services = FakeServices()

        uploader_for(services, user_id="user_1").upload(video_file, client_payload="album=7")

        request = services.token_requests[0]
        body = json.loads(request.content)
        assert body["type"] == GENERATE_CLIENT_TOKEN
        assert body["payload"] == {
            "pathname": "clip.mp4",
            "contentType": "video/mp4",
            "size": 200_000,
            "clientPayload": "album=7",
        }
        assert request.headers["x-user-id"] == "user_1"

    def test_bytes_go_straight_to_store_with_fields(self, video_file):
        services = FakeServices()

        uploader_for(services).upload(video_file)

        upload = services.uploads[0]
        assert str(upload.url) == STORE_URL
        assert b'name="token"' in upload.content
        assert b"signed" in upload.content
        assert b"Content-Type: video/mp4" in upload.content

    def test_progress_is_monotonic_and_ends_at_100(self, video_file):
        services = FakeServices()
        reported = []

        uploader_for(services).upload(video_file, on_progress=reported.append)

        assert reported[0] == 0
        assert reported[-1] == 100
        assert reported == sorted(set(reported))

    def test_empty_file_still_finishes_at_100(self, tmp_path):
        path = tmp_path / "empty.mp4"
        path.write_bytes(b"")
        reported = []

        uploader_for(FakeServices()).upload(path, on_progress=reported.append)

        assert reported[-1] == 100

    def test_s3_style_empty_response_falls_back_to_token_url(self, video_file):
        url = uploader_for(FakeServices(store_status=204)).upload(video_file)
        assert url == VIDEO_URL

    def test_token_refusal_is_authorization_error(self, video_file):
        services = FakeServices(token_status=400)

        with pytest.raises(AuthorizationError, match="not allowed"):
            uploader_for(services).upload(video_file)
        assert services.uploads == []

    def test_store_refusal_is_authorization_error(self, video_file):
        with pytest.raises(AuthorizationError, match="expired"):
            uploader_for(FakeServices(store_status=403)).upload(video_file)

    def test_store_failure_is_retryable_transfer_error(self, video_file):
        with pytest.raises(TransferError, match="retry"):
            uploader_for(FakeServices(store_status=503)).upload(video_file)

    def test_network_failure_is_transfer_error(self, video_file):
        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransferError):
            uploader_for(unreachable).upload(video_file)

    def test_cancel_aborts_transfer(self, video_file):
        services = FakeServices()
        uploader = uploader_for(services)

        def cancel_after_start(percent):
            uploader.cancel()

        with pytest.raises(UploadCancelled):
            uploader.upload(video_file, on_progress=cancel_after_start)
        assert services.uploads == []

    def test_cancel_midway_aborts_transfer(self, video_file):
        services = FakeServices()
        uploader = uploader_for(services)
        reported = []

        def cancel_past_ten_percent(percent):
            reported.append(percent)
            if percent >= 10:
                uploader.cancel()

        with pytest.raises(UploadCancelled):
            uploader.upload(video_file, on_progress=cancel_past_ten_percent)
        assert 10 <= reported[-1] < 100
        assert services.uploads == []


# ---------------------------------------------------------------------------
# Signed PUT targets
# ---------------------------------------------------------------------------

PUT_TARGET = {
    "method": "PUT",
    "url": "http://store.test/videos/clip-abc.mp4?X-Amz-Signature=abc",
    "headers": {
        "Content-Type": "video/mp4",
        "x-amz-meta-token-payload": '{"userId": "user_1"}',
        "x-amz-meta-callback-url": HANDLE_UPLOAD_URL,
    },
}


class TestPutUpload:
    """Tests for stores that take the raw bytes on a presigned URL."""

    def test_sends_raw_bytes_with_signed_headers(self, video_file):
        services = FakeServices(upload=PUT_TARGET)

        url = uploader_for(services).upload(video_file)

        upload = services.uploads[0]
        assert upload.method == "PUT"
        assert str(upload.url) == PUT_TARGET["url"]
        assert upload.content == video_file.read_bytes()
        assert upload.headers["content-type"] == "video/mp4"
        assert upload.headers["content-length"] == "200000"
        assert upload.headers["x-amz-meta-token-payload"] == '{"userId": "user_1"}'
        assert "transfer-encoding" not in upload.headers
        assert url == VIDEO_URL

    def test_progress_ends_at_100(self, video_file):
        reported = []

        uploader_for(FakeServices(upload=PUT_TARGET)).upload(video_file, on_progress=reported.append)

        assert reported[0] == 0
        assert reported[-1] == 100
        assert reported == sorted(set(reported))

    def test_empty_file_is_sent_with_zero_length(self, tmp_path):
        path = tmp_path / "empty.mp4"
        path.write_bytes(b"")
        services = FakeServices(upload=PUT_TARGET)

        uploader_for(services).upload(path)

        assert services.uploads[0].headers["content-length"] == "0"
        assert services.uploads[0].content == b""

    def test_signature_mismatch_is_authorization_error(self, video_file):
        with pytest.raises(AuthorizationError):
            uploader_for(FakeServices(store_status=403, upload=PUT_TARGET)).upload(video_file)
