"""
Upload authorization and completion handling.

The browser never sends video bytes through this service. It asks for a
token, uploads straight to the store, and the store later tells us the
upload landed. This module holds the rules for both ends:

- authorize(): turn a client's request into an UploadGrant and let the
  store mint a token for it
- complete(): run the completion side effect, reporting failures so the
  store redelivers

Identity is NOT checked here. Whoever mounts the endpoint is responsible
for authenticating uploaders before tokens are issued.
"""

import json
import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from posixpath import basename
from typing import Any, Awaitable, Callable, Optional, Protocol

from .errors import AuthorizationError, PersistenceCallbackError
from .models import (
    ALLOWED_CONTENT_TYPES,
    MAX_UPLOAD_BYTES,
    UploadCompletion,
    UploadGrant,
    UploadToken,
)

logger = logging.getLogger(__name__)

RANDOM_SUFFIX_LENGTH = 21
_SUFFIX_ALPHABET = string.ascii_letters + string.digits

CompletionHandler = Callable[[UploadCompletion], Awaitable[None]]


class TokenIssuer(Protocol):
    """The slice of the blob store the authorizer needs."""

    async def issue_upload_token(self, grant: UploadGrant) -> UploadToken:
        ...


@dataclass(frozen=True)
class UploadPolicy:
    """What every issued token allows."""
    allowed_content_types: tuple[str, ...] = ALLOWED_CONTENT_TYPES
    max_file_size: int = MAX_UPLOAD_BYTES
    add_random_suffix: bool = True
    token_ttl_seconds: int = 3600
    callback_url: Optional[str] = None


@dataclass(frozen=True)
class UploadRequest:
    """What the client declares when asking for a token."""
    pathname: str
    content_type: str
    size: Optional[int] = None
    client_payload: Optional[str] = None
    user_id: Optional[str] = None


def add_random_suffix(pathname: str) -> str:
    """
    Insert a random suffix before the extension.

    clip.mp4 -> clip-<21 alphanumerics>.mp4. Two uploads of the same name
    never land on the same pathname.
    """
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(RANDOM_SUFFIX_LENGTH))
    directory, _, name = pathname.rpartition("/")
    if "." in name and not name.startswith("."):
        stem, ext = name.rsplit(".", 1)
        name = f"{stem}-{suffix}.{ext}"
    else:
        name = f"{name}-{suffix}"
    return f"{directory}/{name}" if directory else name


def build_token_payload(request: UploadRequest) -> str:
    """Opaque string echoed back by the store on completion."""
    payload: dict[str, Any] = {}
    if request.user_id:
        payload["userId"] = request.user_id
    if request.client_payload:
        payload["clientPayload"] = request.client_payload
    return json.dumps(payload)


def user_id_from_token_payload(token_payload: str) -> Optional[str]:
    """Best-effort read of the userId we embedded. Foreign payloads yield None."""
    if not token_payload:
        return None
    try:
        data = json.loads(token_payload)
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get("userId"), str):
        return data["userId"]
    return None


class UploadAuthorizer:
    """
    Issues upload tokens and applies upload completions.

    Stateless apart from its collaborators, so a new instance per request
    is fine.
    """

    def __init__(
        self,
        store: TokenIssuer,
        policy: UploadPolicy,
        on_completed: Optional[CompletionHandler] = None,
    ) -> None:
        self._store = store
        self._policy = policy
        self._on_completed = on_completed

    @property
    def policy(self) -> UploadPolicy:
        return self._policy

    def build_grant(self, request: UploadRequest, now: Optional[datetime] = None) -> UploadGrant:
        """
        Validate the request against the policy and build its grant.

        Raises AuthorizationError for anything the store would reject
        anyway; catching it here saves the client a wasted transfer.
        """
        pathname = request.pathname.strip().lstrip("/")
        if not pathname or not basename(pathname):
            raise AuthorizationError("A file name is required")
        if ".." in pathname.split("/"):
            raise AuthorizationError("File name cannot contain '..' segments")

        content_type = (request.content_type or "").strip().lower()
        if not content_type:
            raise AuthorizationError("contentType is required")
        if content_type not in self._policy.allowed_content_types:
            raise AuthorizationError(
                f"Content type {content_type} is not allowed. "
                f"Allowed: {', '.join(self._policy.allowed_content_types)}"
            )

        if request.size is not None:
            if request.size < 0:
                raise AuthorizationError("File size cannot be negative")
            if request.size > self._policy.max_file_size:
                raise AuthorizationError(
                    f"File exceeds the maximum size of {self._policy.max_file_size} bytes"
                )

        if self._policy.add_random_suffix:
            pathname = add_random_suffix(pathname)

        now = now or datetime.now(timezone.utc)

        return UploadGrant(
            pathname=pathname,
            content_type=content_type,
            allowed_content_types=self._policy.allowed_content_types,
            max_file_size=self._policy.max_file_size,
            add_random_suffix=self._policy.add_random_suffix,
            token_payload=build_token_payload(request),
            callback_url=self._policy.callback_url,
            valid_until=now + timedelta(seconds=self._policy.token_ttl_seconds),
            content_length=request.size,
        )

    async def authorize(self, request: UploadRequest) -> UploadToken:
        """Validate the request and have the store mint a token for it."""
        grant = self.build_grant(request)
        token = await self._store.issue_upload_token(grant)

        logger.info(
            "Issued upload token",
            extra={
                "requested_pathname": request.pathname,
                "object_key": grant.pathname,
                "content_type": grant.content_type,
                "user_id": request.user_id or "anonymous",
            },
        )

        return token

    async def complete(self, completion: UploadCompletion) -> None:
        """
        Run the completion side effect.

        The store delivers at least once and may redeliver while an earlier
        delivery is still running, so the handler must be idempotent.
        Failures are re-raised as PersistenceCallbackError for the caller to
        report back to the store.
        """
        logger.info(
            "Video upload completed",
            extra={
                "object_key": completion.blob.pathname,
                "url": completion.blob.url,
                "size_bytes": completion.blob.size,
            },
        )

        if self._on_completed is None:
            return

        try:
            await self._on_completed(completion)
        except Exception as e:
            logger.error(
                "Upload completion handler failed",
                extra={"object_key": completion.blob.pathname, "error": str(e)},
                exc_info=e,
            )
            raise PersistenceCallbackError("Could not record completed upload") from e
