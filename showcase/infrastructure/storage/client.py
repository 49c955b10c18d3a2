"""
Blob store client for uploaded videos.

Supports Cloudflare R2 (S3-compatible) with mock mode for local development.
The rest of the application only sees the narrow BlobStore protocol:
- issue_upload_token: mint a scoped, time-limited upload authorization
- list_objects: every object in the store, all pages
- object_url: the public URL for a pathname

Mock mode keeps objects in memory and accepts uploads through this
service's own /api/blob routes, enabling the full upload flow without
provisioning storage.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol
from urllib.parse import quote

from ...core.videos.errors import AuthorizationError
from ...core.videos.models import StoredObject, UploadCompletion, UploadGrant, UploadToken
from .tokens import InvalidUploadToken, TokenSigner

logger = logging.getLogger(__name__)

# S3 user metadata keys carried on every uploaded object
TOKEN_PAYLOAD_META = "token-payload"
CALLBACK_URL_META = "callback-url"


class StorageError(Exception):
    """Raised when storage operations fail."""
    pass


@dataclass
class StorageConfig:
    """
    Configuration for R2/S3-compatible storage.

    public_base_url is the bucket's public domain; object URLs are built
    on it so gallery playback never needs presigned reads.
    """
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    endpoint_url: str
    public_base_url: str
    region: str = "auto"  # R2 uses 'auto' for region


class BlobStore(Protocol):
    """
    Protocol for blob store operations.

    Using a protocol means tests can provide fakes and we can swap
    storage backends without changing dependent code.
    """

    async def issue_upload_token(self, grant: UploadGrant) -> UploadToken:
        """Mint a token the client can upload with."""
        ...

    async def list_objects(self) -> list[StoredObject]:
        """List every object in the store."""
        ...

    def object_url(self, pathname: str) -> str:
        """Public URL for a pathname."""
        ...


class R2BlobStore:
    """
    Cloudflare R2 blob store.

    Uses boto3 because R2 is S3-compatible. Upload tokens are presigned
    PUT URLs, so the browser sends bytes straight to R2 and R2 itself
    enforces the content type, the declared length and the expiry.

    All methods are async to match the Protocol even though boto3 is
    synchronous.
    """

    def __init__(self, config: StorageConfig, s3_client=None) -> None:
        """
        Initialize R2 client with boto3.

        We import boto3 here (not at module level) because mock mode
        doesn't need it. An existing client can be passed in for tests.
        """
        self._config = config

        if s3_client is None:
            try:
                import boto3
                from botocore.config import Config
            except ImportError:
                raise ImportError(
                    "boto3 is required for R2 storage. Install with: pip install boto3"
                )

            # R2 requires v4 signatures and has specific endpoint patterns
            boto_config = Config(
                signature_version='s3v4',
                s3={'addressing_style': 'path'},
            )

            s3_client = boto3.client(
                's3',
                endpoint_url=config.endpoint_url,
                aws_access_key_id=config.access_key_id,
                aws_secret_access_key=config.secret_access_key,
                region_name=config.region,
                config=boto_config,
            )

        self._s3_client = s3_client

        logger.info(
            "Initialized R2 blob store",
            extra={
                "bucket": config.bucket_name,
                "endpoint": config.endpoint_url,
            }
        )

    def object_url(self, pathname: str) -> str:
        return f"{self._config.public_base_url.rstrip('/')}/{quote(pathname)}"

    async def issue_upload_token(self, grant: UploadGrant) -> UploadToken:
        """
        Generate a presigned PUT URL for exactly one object key.

        R2 has no POST Object, so the limits live in the signature: the
        key, the (already whitelisted) content type and the exact declared
        length are signed, and R2 refuses a request whose headers differ.
        Token payload and callback URL are signed as user metadata so the
        completion forwarder can echo them.
        """
        if grant.content_length is None:
            raise AuthorizationError("File size is required to upload")
        if grant.content_length > grant.max_file_size:
            raise AuthorizationError(
                f"File exceeds the maximum size of {grant.max_file_size} bytes"
            )

        expires_in = int((grant.valid_until - datetime.now(timezone.utc)).total_seconds())
        expires_in = max(expires_in, 1)

        metadata = {
            TOKEN_PAYLOAD_META: grant.token_payload,
            CALLBACK_URL_META: grant.callback_url or '',
        }

        try:
            url = self._s3_client.generate_presigned_url(
                'put_object',
                Params={
                    'Bucket': self._config.bucket_name,
                    'Key': grant.pathname,
                    'ContentType': grant.content_type,
                    'ContentLength': grant.content_length,
                    'Metadata': metadata,
                },
                ExpiresIn=expires_in,
                HttpMethod='PUT',
            )
        except Exception as e:
            logger.error(
                "Failed to generate presigned PUT URL",
                extra={"object_key": grant.pathname, "error": str(e)}
            )
            raise StorageError(f"Upload token generation failed: {e}")

        # Content-Length is signed too, but HTTP clients set it themselves
        headers = {'Content-Type': grant.content_type}
        headers.update({f'x-amz-meta-{name}': value for name, value in metadata.items()})

        return UploadToken(
            grant=grant,
            url=self.object_url(grant.pathname),
            upload_url=url,
            upload_method="PUT",
            upload_headers=headers,
        )

    async def list_objects(self) -> list[StoredObject]:
        """
        List every object in the bucket.

        list_objects_v2 returns at most 1000 keys per call, so we follow
        continuation tokens through the paginator until the listing ends.
        """
        objects: list[StoredObject] = []

        try:
            paginator = self._s3_client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self._config.bucket_name):
                for obj in page.get('Contents', []):
                    objects.append(StoredObject(
                        pathname=obj['Key'],
                        url=self.object_url(obj['Key']),
                        size=obj['Size'],
                        uploaded_at=obj['LastModified'],
                    ))
        except Exception as e:
            logger.error(
                "Failed to list objects",
                extra={"bucket": self._config.bucket_name, "error": str(e)}
            )
            raise StorageError(f"Listing failed: {e}")

        return objects

    async def describe_object(self, pathname: str) -> tuple[StoredObject, dict[str, str]]:
        """Fetch one object's descriptor and user metadata."""
        try:
            response = self._s3_client.head_object(
                Bucket=self._config.bucket_name,
                Key=pathname,
            )
        except Exception as e:
            logger.error(
                "Failed to describe object",
                extra={"object_key": pathname, "error": str(e)}
            )
            raise StorageError(f"Head object failed: {e}")

        blob = StoredObject(
            pathname=pathname,
            url=self.object_url(pathname),
            size=response['ContentLength'],
            uploaded_at=response['LastModified'],
            content_type=response.get('ContentType'),
        )
        return blob, dict(response.get('Metadata', {}))


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

@dataclass
class _MockObject:
    data: bytes
    blob: StoredObject


class MockBlobStore:
    """
    In-memory blob store for local development.

    Upload tokens are signed JWTs. The browser posts the file to this
    service's /api/blob/upload route, which hands it to accept_upload();
    objects are served back from /api/blob/objects/{pathname}.

    An object becomes visible only after its whole body was received and
    checked, so an aborted upload never shows up in a listing.

    Objects are lost on restart; use it for development and tests only.
    """

    def __init__(self, signer: TokenSigner, base_url: str) -> None:
        self._signer = signer
        self._base_url = base_url.rstrip("/")
        self._objects: dict[str, _MockObject] = {}
        # jti -> exp of used tokens, kept until the token would have expired
        self._consumed_tokens: dict[str, int] = {}
        logger.info("Initialized mock blob store (in-memory)")

    @property
    def upload_url(self) -> str:
        return f"{self._base_url}/api/blob/upload"

    def object_url(self, pathname: str) -> str:
        return f"{self._base_url}/api/blob/objects/{quote(pathname)}"

    async def issue_upload_token(self, grant: UploadGrant) -> UploadToken:
        token = self._signer.issue_upload_token(grant)
        return UploadToken(
            grant=grant,
            url=self.object_url(grant.pathname),
            upload_url=self.upload_url,
            upload_fields={"token": token},
        )

    def accept_upload(
        self,
        token: str,
        content_type: Optional[str],
        data: bytes,
    ) -> tuple[UploadCompletion, Optional[str]]:
        """
        Enforce the token's constraints and store the object.

        Returns the completion to report and the callback URL to report it
        to. Raises AuthorizationError on any constraint violation; nothing
        is stored in that case.
        """
        try:
            claims = self._signer.decode_upload_token(token)
        except InvalidUploadToken as e:
            raise AuthorizationError(str(e))

        self._prune_consumed_tokens()
        token_id = claims["jti"]
        if token_id in self._consumed_tokens:
            raise AuthorizationError("Upload token has already been used")

        content_type = (content_type or "").split(";")[0].strip().lower()
        if content_type not in claims["allowedContentTypes"]:
            raise AuthorizationError(f"Content type {content_type or 'unknown'} is not allowed")
        if content_type != claims["contentType"]:
            raise AuthorizationError("Content type does not match the authorized upload")

        if len(data) > claims["maxFileSize"]:
            raise AuthorizationError(
                f"File exceeds the maximum size of {claims['maxFileSize']} bytes"
            )
        declared = claims.get("contentLength")
        if declared is not None and len(data) != declared:
            raise AuthorizationError("File size does not match the authorized upload")

        blob = self.put_object(claims["pathname"], data, content_type)
        self._consumed_tokens[token_id] = claims["exp"]

        logger.info(
            "Accepted upload into mock store",
            extra={"object_key": blob.pathname, "size_bytes": blob.size},
        )

        completion = UploadCompletion(blob=blob, token_payload=claims.get("tokenPayload") or "")
        return completion, claims.get("callbackUrl")

    def _prune_consumed_tokens(self) -> None:
        # An expired token fails decoding, so its jti no longer needs tracking
        now = datetime.now(timezone.utc).timestamp()
        for token_id, expires_at in list(self._consumed_tokens.items()):
            if expires_at <= now:
                del self._consumed_tokens[token_id]

    @property
    def consumed_token_count(self) -> int:
        return len(self._consumed_tokens)

    def put_object(
        self,
        pathname: str,
        data: bytes,
        content_type: Optional[str] = None,
        uploaded_at: Optional[datetime] = None,
    ) -> StoredObject:
        """Store an object directly. Overwrites an existing pathname."""
        blob = StoredObject(
            pathname=pathname,
            url=self.object_url(pathname),
            size=len(data),
            uploaded_at=uploaded_at or datetime.now(timezone.utc),
            content_type=content_type,
        )
        self._objects[pathname] = _MockObject(data=data, blob=blob)
        return blob

    def read_object(self, pathname: str) -> tuple[bytes, Optional[str]]:
        """Return object bytes and content type."""
        if pathname not in self._objects:
            raise StorageError(f"Object not found: {pathname}")
        stored = self._objects[pathname]
        return stored.data, stored.blob.content_type

    async def list_objects(self) -> list[StoredObject]:
        return [stored.blob for stored in self._objects.values()]


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_blob_store(
    config: Optional[StorageConfig] = None,
    mock_mode: bool = False,
    signer: Optional[TokenSigner] = None,
    base_url: str = "http://localhost:8000",
) -> BlobStore:
    """
    Create blob store based on configuration.

    Args:
        config: Storage configuration (required if not mock_mode)
        mock_mode: If True, return the in-memory store
        signer: Token signer (required if mock_mode)
        base_url: Public base URL of this service, for mock object URLs

    Returns:
        BlobStore implementation (R2 or Mock)
    """
    if mock_mode:
        if signer is None:
            raise ValueError("signer is required in mock mode")
        return MockBlobStore(signer=signer, base_url=base_url)

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return R2BlobStore(config)
