"""
Signing for upload tokens and completion notifications.

Two things need to be unforgeable:
- Upload tokens held by the browser (mock store only; R2 uploads use a
  presigned PUT URL). These are short-lived HS256 JWTs carrying the
  grant, so the store can enforce it without calling back.
- Completion notifications sent by the store. The raw body is signed with
  HMAC-SHA256 and the hex digest travels in the x-blob-signature header.
"""

import hashlib
import hmac
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from ...core.videos.models import UploadGrant

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-blob-signature"
JWT_ALG = "HS256"
JWT_ISS = "video-showcase"


class InvalidUploadToken(Exception):
    """Raised when an upload token is malformed, forged or expired."""
    pass


class TokenSigner:
    """Issues and verifies signed upload tokens and notification bodies."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("Signing secret cannot be empty")
        self._secret = secret

    def issue_upload_token(self, grant: UploadGrant) -> str:
        now = datetime.now(timezone.utc)
        claims: dict[str, Any] = {
            "iss": JWT_ISS,
            "jti": uuid.uuid4().hex,
            "iat": int(now.timestamp()),
            "exp": int(grant.valid_until.timestamp()),
            "pathname": grant.pathname,
            "contentType": grant.content_type,
            "allowedContentTypes": list(grant.allowed_content_types),
            "maxFileSize": grant.max_file_size,
            "addRandomSuffix": grant.add_random_suffix,
            "tokenPayload": grant.token_payload,
            "callbackUrl": grant.callback_url,
            "contentLength": grant.content_length,
        }
        return jwt.encode(claims, self._secret, algorithm=JWT_ALG)

    def decode_upload_token(self, token: str) -> dict[str, Any]:
        """Verify signature, issuer and expiry. Returns the claims."""
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALG],
                issuer=JWT_ISS,
                options={"verify_aud": False},
            )
        except ExpiredSignatureError:
            raise InvalidUploadToken("Upload token has expired")
        except JWTError as e:
            logger.warning("Rejected upload token", extra={"error": str(e)})
            raise InvalidUploadToken("Upload token is invalid")

    def sign_body(self, body: bytes) -> str:
        return hmac.new(self._secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

    def verify_body(self, body: bytes, signature: Optional[str]) -> bool:
        if not signature:
            return False
        return hmac.compare_digest(self.sign_body(body), signature.strip().lower())
