"""
Unit tests for completion notification delivery.

The receiver is an httpx.MockTransport, so retries run instantly and
without a network.
"""

import asyncio
import json
from datetime import datetime, timezone

import boto3
import httpx
import pytest
from botocore.stub import Stubber

from showcase.core.videos.models import StoredObject, UploadCompletion
from showcase.infrastructure.storage.client import R2BlobStore, StorageConfig
from showcase.infrastructure.storage.notifications import (
    UPLOAD_COMPLETED,
    CompletionNotifier,
    completion_body,
    completion_for_object,
    created_object_keys,
)
from showcase.infrastructure.storage.tokens import SIGNATURE_HEADER, TokenSigner

CALLBACK_URL = "http://app.test/api/uploads"


def completion() -> UploadCompletion:
    return UploadCompletion(
        blob=StoredObject(
            pathname="clip-abc.mp4",
            url="https://videos.example.com/clip-abc.mp4",
            size=2048,
            uploaded_at=datetime(2026, 10, 17, 9, 30, tzinfo=timezone.utc),
            content_type="video/mp4",
        ),
        token_payload='{"userId": "user_1"}',
    )


class Receiver:
    """Answers with a scripted sequence of status codes and keeps requests."""

    def __init__(self, *statuses: int):
        self._statuses = list(statuses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self._statuses.pop(0) if self._statuses else 200
        if status == 0:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(status, json={"ok": status < 300})


def notifier_for(receiver: Receiver, signer: TokenSigner, max_attempts: int = 5) -> CompletionNotifier:
    return CompletionNotifier(
        signer,
        max_attempts=max_attempts,
        retry_delay_seconds=0,
        client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(receiver)),
    )


@pytest.fixture
def signer() -> TokenSigner:
    return TokenSigner("test-secret")


# ---------------------------------------------------------------------------
# Wire format
# ---------------------------------------------------------------------------

class TestCompletionBody:
    """Tests for the notification body."""

    def test_body_shape(self):
        body = completion_body(completion())

        assert body == {
            "type": UPLOAD_COMPLETED,
            "payload": {
                "blob": {
                    "url": "https://videos.example.com/clip-abc.mp4",
                    "pathname": "clip-abc.mp4",
                    "size": 2048,
                    "uploadedAt": "2026-10-17T09:30:00+00:00",
                    "contentType": "video/mp4",
                },
                "tokenPayload": '{"userId": "user_1"}',
            },
        }


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------

class TestCompletionNotifier:
    """Tests for at-least-once delivery."""

    def test_delivers_on_first_success(self, signer):
        receiver = Receiver(200)

        delivered = asyncio.run(notifier_for(receiver, signer).notify(CALLBACK_URL, completion()))

        assert delivered
        assert len(receiver.requests) == 1
        assert str(receiver.requests[0].url) == CALLBACK_URL

    def test_body_is_signed(self, signer):
        receiver = Receiver(200)

        asyncio.run(notifier_for(receiver, signer).notify(CALLBACK_URL, completion()))

        request = receiver.requests[0]
        assert signer.verify_body(request.content, request.headers[SIGNATURE_HEADER])
        assert json.loads(request.content)["type"] == UPLOAD_COMPLETED

    def test_retries_until_acknowledged(self, signer):
        receiver = Receiver(400, 500, 0, 200)

        delivered = asyncio.run(notifier_for(receiver, signer).notify(CALLBACK_URL, completion()))

        assert delivered
        assert len(receiver.requests) == 4

    def test_gives_up_after_max_attempts(self, signer):
        receiver = Receiver(500, 500, 500, 500, 500, 200)

        delivered = asyncio.run(notifier_for(receiver, signer).notify(CALLBACK_URL, completion()))

        assert not delivered
        assert len(receiver.requests) == 5

    def test_every_attempt_sends_identical_body(self, signer):
        receiver = Receiver(500, 200)

        asyncio.run(notifier_for(receiver, signer).notify(CALLBACK_URL, completion()))

        first, second = receiver.requests
        assert first.content == second.content

    def test_requires_at_least_one_attempt(self, signer):
        with pytest.raises(ValueError):
            CompletionNotifier(signer, max_attempts=0)


# ---------------------------------------------------------------------------
# Event notifications
# ---------------------------------------------------------------------------

class TestCreatedObjectKeys:
    """Tests for reading created keys out of event notifications."""

    def test_s3_records_are_url_decoded(self):
        keys, skipped = created_object_keys({"Records": [
            {"eventName": "ObjectCreated:Put", "s3": {"object": {"key": "my+clip-abc.mp4"}}},
            {"eventName": "ObjectRemoved:Delete", "s3": {"object": {"key": "old.mp4"}}},
        ]})

        assert keys == ["my clip-abc.mp4"]
        assert skipped == 1

    def test_single_r2_message(self):
        keys, skipped = created_object_keys({
            "account": "3f4b7e3dcab231cbfdaa90a6a28bd548",
            "bucket": "videos",
            "action": "PutObject",
            "object": {"key": "my clip-abc.mp4", "size": 2048, "eTag": "e8f1b9f0c2d4"},
            "eventTime": "2026-10-17T09:30:00.000Z",
        })

        assert keys == ["my clip-abc.mp4"]
        assert skipped == 0

    def test_r2_message_list_skips_deletes(self):
        keys, skipped = created_object_keys([
            {"action": "CompleteMultipartUpload", "object": {"key": "big.mp4"}},
            {"action": "DeleteObject", "object": {"key": "old.mp4"}},
        ])

        assert keys == ["big.mp4"]
        assert skipped == 1

    def test_queue_batch_with_text_bodies(self):
        keys, _ = created_object_keys({"messages": [
            {"id": "1", "body": json.dumps({"action": "PutObject", "object": {"key": "a.mp4"}})},
            {"id": "2", "body": {"action": "CopyObject", "object": {"key": "b.mp4"}}},
        ]})

        assert keys == ["a.mp4", "b.mp4"]


class TestCompletionForObject:
    """Tests for turning a created object into a completion."""

    def test_reads_metadata_from_head_object(self):
        s3_client = boto3.client(
            "s3",
            region_name="us-east-1",
            aws_access_key_id="test-key",
            aws_secret_access_key="test-secret",
        )
        store = R2BlobStore(
            StorageConfig(
                access_key_id="test-key",
                secret_access_key="test-secret",
                bucket_name="videos",
                endpoint_url="https://account.r2.cloudflarestorage.com",
                public_base_url="https://videos.example.com",
            ),
            s3_client=s3_client,
        )
        with Stubber(s3_client) as stubber:
            stubber.add_response(
                "head_object",
                {
                    "ContentLength": 2048,
                    "LastModified": datetime(2026, 10, 17, tzinfo=timezone.utc),
                    "ContentType": "video/mp4",
                    "Metadata": {
                        "token-payload": '{"userId": "user_1"}',
                        "callback-url": CALLBACK_URL,
                    },
                },
                {"Bucket": "videos", "Key": "my clip-abc.mp4"},
            )

            event, callback_url = asyncio.run(completion_for_object("my clip-abc.mp4", store))

        assert event.blob.pathname == "my clip-abc.mp4"
        assert event.blob.size == 2048
        assert event.token_payload == '{"userId": "user_1"}'
        assert callback_url == CALLBACK_URL
