"""
Providers for route dependencies.

Routes declare what they need through the Annotated aliases at the bottom
of this module. Settings drive which blob store is built; tests replace
get_settings and get_blob_store through app.dependency_overrides.
"""

import logging
from typing import Annotated

import httpx
from fastapi import Depends, Request

from ..config.settings import Settings, get_settings
from ..core.videos.catalog import CatalogService
from ..core.videos.models import ALLOWED_CONTENT_TYPES
from ..core.videos.uploads import UploadAuthorizer, UploadPolicy
from ..infrastructure.catalog.repositories import (
    RegisteredVideoRepository,
    UploadRecordRepository,
)
from ..infrastructure.storage.client import BlobStore, StorageConfig, create_blob_store
from ..infrastructure.storage.notifications import CompletionNotifier
from ..infrastructure.storage.tokens import TokenSigner

logger = logging.getLogger(__name__)

# Global mock instance (shared across requests so uploads persist)
_mock_blob_store = None


# ---------------------------------------------------------------------------
# Storage Dependencies
# ---------------------------------------------------------------------------

def get_token_signer(
    settings: Annotated[Settings, Depends(get_settings)],
) -> TokenSigner:
    return TokenSigner(settings.upload_token_secret)


def get_blob_store(
    settings: Annotated[Settings, Depends(get_settings)],
    signer: Annotated[TokenSigner, Depends(get_token_signer)],
) -> BlobStore:
    """
    Provide the blob store.

    Returns either the R2 store or the in-memory store based on settings.
    In mock mode the same store is reused across requests so that
    uploaded videos stay listed during the development session.
    """
    global _mock_blob_store

    if settings.r2_mock_mode:
        if _mock_blob_store is None:
            _mock_blob_store = create_blob_store(
                mock_mode=True,
                signer=signer,
                base_url=settings.public_base_url,
            )
            logger.info("Created shared mock blob store for session")
        return _mock_blob_store

    config = StorageConfig(
        access_key_id=settings.r2_access_key_id,
        secret_access_key=settings.r2_secret_access_key,
        bucket_name=settings.r2_bucket_name,
        endpoint_url=settings.r2_endpoint,
        public_base_url=settings.r2_public_base_url or settings.r2_endpoint,
    )
    store = create_blob_store(config=config)
    logger.debug("Created R2 blob store")

    return store


def get_completion_notifier(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    signer: Annotated[TokenSigner, Depends(get_token_signer)],
) -> CompletionNotifier:
    """
    Provide the notifier the mock store delivers completions with.

    Deliveries go through an in-process ASGI transport into this same
    application, so mock mode works without a public callback URL.
    """
    transport = httpx.ASGITransport(app=request.app)

    return CompletionNotifier(
        signer=signer,
        max_attempts=settings.completion_max_attempts,
        retry_delay_seconds=settings.completion_retry_delay_seconds,
        client_factory=lambda: httpx.AsyncClient(
            transport=transport,
            base_url=settings.public_base_url,
        ),
    )


# ---------------------------------------------------------------------------
# Repository Dependencies
# ---------------------------------------------------------------------------

def get_registry_repository(
    settings: Annotated[Settings, Depends(get_settings)],
) -> RegisteredVideoRepository:
    return RegisteredVideoRepository.in_directory(settings.data_dir)


def get_upload_record_repository(
    settings: Annotated[Settings, Depends(get_settings)],
) -> UploadRecordRepository:
    return UploadRecordRepository.in_directory(settings.data_dir)


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def get_upload_authorizer(
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[BlobStore, Depends(get_blob_store)],
    records: Annotated[UploadRecordRepository, Depends(get_upload_record_repository)],
) -> UploadAuthorizer:
    """
    Provide the upload authorizer.

    The completion side effect records each finished upload, keyed by
    pathname, so redelivered notifications are harmless.
    """
    policy = UploadPolicy(
        allowed_content_types=ALLOWED_CONTENT_TYPES,
        max_file_size=settings.max_upload_size_bytes,
        add_random_suffix=True,
        token_ttl_seconds=settings.upload_token_ttl_seconds,
        callback_url=settings.completion_callback_url,
    )
    return UploadAuthorizer(store=store, policy=policy, on_completed=records.record_completion)


def get_catalog_service(
    store: Annotated[BlobStore, Depends(get_blob_store)],
) -> CatalogService:
    return CatalogService(store)


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
SettingsDep = Annotated[Settings, Depends(get_settings)]
TokenSignerDep = Annotated[TokenSigner, Depends(get_token_signer)]
BlobStoreDep = Annotated[BlobStore, Depends(get_blob_store)]
CompletionNotifierDep = Annotated[CompletionNotifier, Depends(get_completion_notifier)]
RegistryRepositoryDep = Annotated[RegisteredVideoRepository, Depends(get_registry_repository)]
UploadRecordRepositoryDep = Annotated[UploadRecordRepository, Depends(get_upload_record_repository)]
UploadAuthorizerDep = Annotated[UploadAuthorizer, Depends(get_upload_authorizer)]
CatalogServiceDep = Annotated[CatalogService, Depends(get_catalog_service)]
