"""
Store-side delivery of upload completion notifications.

Once an upload is finalized the store tells the application, out-of-band
from the browser, by POSTing a signed blob.upload-completed body to the
token's callback URL. Delivery is at least once: any non-2xx answer or
transport error is retried, up to max_attempts.

The mock store calls this itself. For R2, scripts/forward_upload_events.py
runs it from object-created event notifications.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Optional
from urllib.parse import unquote_plus

import httpx

from ...core.videos.models import UploadCompletion, utc
from .client import CALLBACK_URL_META, TOKEN_PAYLOAD_META, R2BlobStore
from .tokens import SIGNATURE_HEADER, TokenSigner

logger = logging.getLogger(__name__)

UPLOAD_COMPLETED = "blob.upload-completed"

# R2 event notification actions that leave a new object behind
R2_CREATED_ACTIONS = ("PutObject", "CopyObject", "CompleteMultipartUpload")

ClientFactory = Callable[[], httpx.AsyncClient]


def completion_body(completion: UploadCompletion) -> dict[str, Any]:
    """Wire format of a completion notification."""
    blob = completion.blob
    return {
        "type": UPLOAD_COMPLETED,
        "payload": {
            "blob": {
                "url": blob.url,
                "pathname": blob.pathname,
                "size": blob.size,
                "uploadedAt": utc(blob.uploaded_at).isoformat(),
                "contentType": blob.content_type,
            },
            "tokenPayload": completion.token_payload,
        },
    }


class CompletionNotifier:
    """
    Delivers completion notifications with bounded retries.

    The receiving endpoint answers 400 when its side effect failed, which
    is what makes redelivery useful.
    """

    def __init__(
        self,
        signer: TokenSigner,
        max_attempts: int = 5,
        retry_delay_seconds: float = 1.0,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._signer = signer
        self._max_attempts = max_attempts
        self._retry_delay_seconds = retry_delay_seconds
        self._client_factory = client_factory or (lambda: httpx.AsyncClient(timeout=10.0))

    async def notify(self, callback_url: str, completion: UploadCompletion) -> bool:
        """
        POST the completion until the receiver acknowledges it.

        Returns True on the first 2xx, False once attempts are exhausted.
        """
        body = json.dumps(completion_body(completion)).encode("utf-8")
        headers = {
            "content-type": "application/json",
            SIGNATURE_HEADER: self._signer.sign_body(body),
        }

        async with self._client_factory() as client:
            for attempt in range(1, self._max_attempts + 1):
                try:
                    response = await client.post(callback_url, content=body, headers=headers)
                    if response.is_success:
                        logger.info(
                            "Delivered upload completion",
                            extra={
                                "object_key": completion.blob.pathname,
                                "attempt": attempt,
                            }
                        )
                        return True
                    error = f"HTTP {response.status_code}: {response.text[:200]}"
                except httpx.HTTPError as e:
                    error = str(e)

                logger.warning(
                    "Upload completion delivery failed",
                    extra={
                        "object_key": completion.blob.pathname,
                        "attempt": attempt,
                        "max_attempts": self._max_attempts,
                        "error": error,
                    }
                )

                if attempt < self._max_attempts and self._retry_delay_seconds > 0:
                    await asyncio.sleep(self._retry_delay_seconds * attempt)

        logger.error(
            "Giving up on upload completion delivery",
            extra={"object_key": completion.blob.pathname, "callback_url": callback_url}
        )
        return False


def created_object_keys(event: Any) -> tuple[list[str], int]:
    """
    Keys of the objects an event notification reports as created.

    Two shapes are understood:
    - S3 notifications, {"Records": [{"eventName": "ObjectCreated:...",
      "s3": {"object": {"key": ...}}}]}. Keys are URL-encoded.
    - R2 notifications as delivered by Cloudflare Queues, {"action":
      "PutObject", "object": {"key": ...}, ...}. These come alone, as a
      list, or as a batch {"messages": [{"body": ...}]} whose bodies may
      still be JSON text.

    Returns the keys and the number of events skipped as not creating an
    object.
    """
    keys: list[str] = []
    skipped = 0

    if isinstance(event, dict) and "Records" in event:
        for record in event["Records"]:
            if record.get("eventName", "").startswith("ObjectCreated"):
                keys.append(unquote_plus(record["s3"]["object"]["key"]))
            else:
                skipped += 1
        return keys, skipped

    if isinstance(event, dict) and "messages" in event:
        messages = event["messages"]
    elif isinstance(event, list):
        messages = event
    else:
        messages = [event]

    for message in messages:
        if isinstance(message, dict) and "body" in message:
            message = message["body"]
        if isinstance(message, str):
            message = json.loads(message)
        if message.get("action") in R2_CREATED_ACTIONS:
            keys.append(message["object"]["key"])
        else:
            skipped += 1

    return keys, skipped


async def completion_for_object(
    key: str,
    store: R2BlobStore,
) -> tuple[UploadCompletion, Optional[str]]:
    """
    Build a completion for a newly created object.

    Events only carry the key, so the descriptor and the metadata
    written by the presigned PUT come from head_object.
    """
    blob, metadata = await store.describe_object(key)
    completion = UploadCompletion(
        blob=blob,
        token_payload=metadata.get(TOKEN_PAYLOAD_META, ""),
    )
    return completion, metadata.get(CALLBACK_URL_META) or None
