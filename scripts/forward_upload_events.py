#!/usr/bin/env python3
"""
Forward object-created events as upload completion notifications.

R2 does not call our completion endpoint by itself. Deploy this as the
consumer of the bucket's event notifications: R2 sends them to a
Cloudflare Queue, and S3-style {"Records": [...]} events (Lambda) work
too. For every new object it reads the metadata written by the
presigned PUT and delivers a signed blob.upload-completed
to the callback URL, retrying up to COMPLETION_MAX_ATTEMPTS times.

Usage (replay a saved event):
    python scripts/forward_upload_events.py event.json

Requires:
    - .env file with R2 credentials and UPLOAD_TOKEN_SECRET
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

# Add project root to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from showcase.config.settings import get_settings
from showcase.infrastructure.storage.client import R2BlobStore, StorageConfig
from showcase.infrastructure.storage.notifications import (
    CompletionNotifier,
    completion_for_object,
    created_object_keys,
)
from showcase.infrastructure.storage.tokens import TokenSigner

logger = logging.getLogger("forward_upload_events")


async def forward_event(event: Any) -> dict[str, int]:
    """Deliver one completion per created object. Returns counts."""
    settings = get_settings()

    store = R2BlobStore(StorageConfig(
        access_key_id=settings.r2_access_key_id,
        secret_access_key=settings.r2_secret_access_key,
        bucket_name=settings.r2_bucket_name,
        endpoint_url=settings.r2_endpoint,
        public_base_url=settings.r2_public_base_url or settings.r2_endpoint,
    ))
    notifier = CompletionNotifier(
        signer=TokenSigner(settings.upload_token_secret),
        max_attempts=settings.completion_max_attempts,
        retry_delay_seconds=settings.completion_retry_delay_seconds,
    )

    keys, skipped = created_object_keys(event)
    counts = {"delivered": 0, "failed": 0, "skipped": skipped}

    for key in keys:
        completion, callback_url = await completion_for_object(key, store)
        callback_url = callback_url or settings.completion_callback_url

        if await notifier.notify(callback_url, completion):
            counts["delivered"] += 1
        else:
            counts["failed"] += 1

    logger.info("Forwarded upload events", extra=counts)
    return counts


def lambda_handler(event, context):
    counts = asyncio.run(forward_event(event))
    # A failed delivery fails the invocation so the event source retries it
    if counts["failed"]:
        raise RuntimeError(f"{counts['failed']} completion notification(s) were not acknowledged")
    return {"statusCode": 200, "body": json.dumps(counts)}


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Forward object-created events as upload completions')
    parser.add_argument('event_file', help='Path to an event notification JSON document (S3 or R2 shape)')
    args = parser.parse_args()

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=logging.INFO,
    )

    with open(args.event_file, 'r', encoding='utf-8') as f:
        event = json.load(f)

    counts = asyncio.run(forward_event(event))
    print(f"Delivered: {counts['delivered']}, failed: {counts['failed']}, skipped: {counts['skipped']}")
    sys.exit(1 if counts['failed'] else 0)


if __name__ == '__main__':
    main()
