"""
Unit tests for the R2 completion forwarder script.

The store and the notifier are replaced with fakes, so only the event
handling is exercised.
"""

import asyncio
import importlib.util
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from showcase.core.videos.models import StoredObject, UploadCompletion

SCRIPT_PATH = Path(__file__).resolve().parents[2] / "scripts" / "forward_upload_events.py"


@pytest.fixture
def forwarder():
    spec = importlib.util.spec_from_file_location("forward_upload_events", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class FakeNotifier:
    """Acknowledges every pathname except those listed as failing."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.delivered = []

    async def notify(self, callback_url, completion):
        if completion.blob.pathname in self.failing:
            return False
        self.delivered.append((callback_url, completion.blob.pathname))
        return True


def record(key: str, event_name: str = "ObjectCreated:Put") -> dict:
    return {"eventName": event_name, "s3": {"object": {"key": key}}}


def r2_message(key: str, action: str = "PutObject") -> dict:
    return {
        "account": "3f4b7e3dcab231cbfdaa90a6a28bd548",
        "bucket": "videos",
        "action": action,
        "object": {"key": key, "size": 2048, "eTag": "e8f1b9f0c2d4"},
        "eventTime": "2026-10-17T09:30:00.000Z",
    }


@pytest.fixture
def wire(forwarder, monkeypatch):
    """Swap the store, the notifier and the metadata lookup for fakes."""
    def install(notifier, callback_url="https://app.example.com/api/uploads"):
        async def fake_completion(key, store):
            completion = UploadCompletion(
                blob=StoredObject(
                    pathname=key,
                    url=f"https://videos.example.com/{key}",
                    size=1,
                    uploaded_at=datetime(2026, 10, 17, tzinfo=timezone.utc),
                ),
            )
            return completion, callback_url

        monkeypatch.setattr(forwarder, "R2BlobStore", lambda config: object())
        monkeypatch.setattr(forwarder, "CompletionNotifier", lambda **kwargs: notifier)
        monkeypatch.setattr(forwarder, "completion_for_object", fake_completion)
        return forwarder

    return install


class TestForwardEvent:
    """Tests for turning event records into deliveries."""

    def test_delivers_each_created_object(self, wire):
        notifier = FakeNotifier()
        forwarder = wire(notifier)

        counts = asyncio.run(forwarder.forward_event({
            "Records": [record("a.mp4"), record("b.mp4")],
        }))

        assert counts == {"delivered": 2, "failed": 0, "skipped": 0}
        assert [pathname for _, pathname in notifier.delivered] == ["a.mp4", "b.mp4"]

    def test_skips_other_event_types(self, wire):
        forwarder = wire(FakeNotifier())

        counts = asyncio.run(forwarder.forward_event({
            "Records": [record("a.mp4", event_name="ObjectRemoved:Delete")],
        }))

        assert counts == {"delivered": 0, "failed": 0, "skipped": 1}

    def test_missing_callback_falls_back_to_configured_url(self, wire):
        notifier = FakeNotifier()
        forwarder = wire(notifier, callback_url=None)

        asyncio.run(forwarder.forward_event({"Records": [record("a.mp4")]}))

        callback_url, _ = notifier.delivered[0]
        assert callback_url.endswith("/api/uploads")

    def test_lambda_fails_when_delivery_gives_up(self, wire):
        forwarder = wire(FakeNotifier(failing={"b.mp4"}))

        with pytest.raises(RuntimeError, match="1 completion notification"):
            forwarder.lambda_handler({"Records": [record("a.mp4"), record("b.mp4")]}, None)

    def test_lambda_reports_counts(self, wire):
        forwarder = wire(FakeNotifier())

        response = forwarder.lambda_handler({"Records": [record("a.mp4")]}, None)

        assert response["statusCode"] == 200

    def test_delivers_r2_queue_message(self, wire):
        notifier = FakeNotifier()
        forwarder = wire(notifier)

        counts = asyncio.run(forwarder.forward_event(r2_message("a.mp4")))

        assert counts == {"delivered": 1, "failed": 0, "skipped": 0}
        assert [pathname for _, pathname in notifier.delivered] == ["a.mp4"]

    def test_delivers_r2_queue_batch(self, wire):
        notifier = FakeNotifier()
        forwarder = wire(notifier)

        counts = asyncio.run(forwarder.forward_event({
            "messages": [
                {"id": "1", "body": r2_message("a.mp4")},
                {"id": "2", "body": json.dumps(r2_message("b.mp4", action="CompleteMultipartUpload"))},
                {"id": "3", "body": r2_message("a.mp4", action="DeleteObject")},
            ],
        }))

        assert counts == {"delivered": 2, "failed": 0, "skipped": 1}
        assert [pathname for _, pathname in notifier.delivered] == ["a.mp4", "b.mp4"]
