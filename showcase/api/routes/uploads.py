"""
Upload authorization endpoint.

One endpoint serves both halves of the client-upload protocol,
discriminated by the body's `type`:

1. blob.generate-client-token (from the browser): issue a scoped,
   time-limited upload token. The browser then uploads straight to the
   store; no video bytes pass through here.
2. blob.upload-completed (from the store, signed): the upload landed.
   Record it. Answering 400 makes the store redeliver, so a failing side
   effect is reported rather than swallowed.

Identity is not verified. X-User-Id is only echoed into the token payload;
authenticate uploaders in front of this endpoint before trusting it.
"""

import logging
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from fastapi import APIRouter, Header, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from ...core.videos.errors import AuthorizationError, PersistenceCallbackError
from ...core.videos.models import StoredObject, UploadCompletion
from ...core.videos.uploads import UploadAuthorizer, UploadRequest
from ...infrastructure.storage.client import StorageError
from ...infrastructure.storage.notifications import UPLOAD_COMPLETED
from ...infrastructure.storage.tokens import SIGNATURE_HEADER
from ..dependencies import TokenSignerDep, UploadAuthorizerDep

logger = logging.getLogger(__name__)

router = APIRouter()

GENERATE_CLIENT_TOKEN = "blob.generate-client-token"


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class CamelModel(BaseModel):
    """Wire models use camelCase field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ClientTokenPayload(CamelModel):
    pathname: str = Field(description="File name the client wants to upload")
    content_type: Optional[str] = Field(default=None, description="Declared MIME type of the file")
    size: Optional[int] = Field(default=None, description="Declared file size in bytes")
    client_payload: Optional[str] = Field(default=None, description="Opaque value echoed back on completion")


class GenerateClientTokenBody(CamelModel):
    type: Literal["blob.generate-client-token"]
    payload: ClientTokenPayload


class CompletedBlob(CamelModel):
    url: str
    pathname: str
    size: int = Field(ge=0)
    uploaded_at: datetime
    content_type: Optional[str] = None


class UploadCompletedPayload(CamelModel):
    blob: CompletedBlob
    token_payload: Optional[str] = None


class UploadCompletedBody(CamelModel):
    type: Literal["blob.upload-completed"]
    payload: UploadCompletedPayload


HandleUploadBody = Annotated[
    Union[GenerateClientTokenBody, UploadCompletedBody],
    Field(discriminator="type"),
]
_handle_upload_body = TypeAdapter(HandleUploadBody)


class UploadTarget(CamelModel):
    method: str = Field(default="POST", description="POST a multipart form, or PUT the raw bytes")
    url: str = Field(description="Where to send the file")
    fields: dict[str, str] = Field(default_factory=dict, description="Form fields to send along with a POSTed file")
    headers: dict[str, str] = Field(default_factory=dict, description="Headers to send with a PUT")


class ClientTokenResponse(CamelModel):
    """A scoped, single-use upload authorization."""
    type: str = GENERATE_CLIENT_TOKEN
    pathname: str = Field(description="Final pathname, random suffix included")
    url: str = Field(description="Public URL the object will have")
    allowed_content_types: list[str]
    add_random_suffix: bool
    max_file_size: int
    token_payload: str
    valid_until: int = Field(description="Token expiry, milliseconds since epoch")
    upload: UploadTarget


class UploadCompletedResponse(CamelModel):
    type: str = UPLOAD_COMPLETED
    response: str = "ok"


def _error(message: str) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    if location:
        return f"Invalid upload request: {location}: {first['msg']}"
    return f"Invalid upload request: {first['msg']}"


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "",
    status_code=status.HTTP_200_OK,
    summary="Issue upload tokens and receive upload completions",
    responses={400: {"description": "Rejected request", "content": {"application/json": {}}}},
)
async def handle_upload(
    request: Request,
    authorizer: UploadAuthorizerDep,
    signer: TokenSignerDep,
    x_user_id: Annotated[Optional[str], Header()] = None,
) -> JSONResponse:
    raw_body = await request.body()

    try:
        body = _handle_upload_body.validate_json(raw_body)
    except ValidationError as e:
        logger.warning("Malformed upload request", extra={"error": str(e)})
        return _error(_validation_message(e))

    if isinstance(body, GenerateClientTokenBody):
        return await _generate_client_token(body.payload, authorizer, x_user_id)

    if not signer.verify_body(raw_body, request.headers.get(SIGNATURE_HEADER)):
        logger.warning(
            "Rejected upload completion with invalid signature",
            extra={"object_key": body.payload.blob.pathname}
        )
        return _error("Invalid completion signature")

    return await _upload_completed(body.payload, authorizer)


async def _generate_client_token(
    payload: ClientTokenPayload,
    authorizer: UploadAuthorizer,
    user_id: Optional[str],
) -> JSONResponse:
    upload_request = UploadRequest(
        pathname=payload.pathname,
        content_type=payload.content_type or "",
        size=payload.size,
        client_payload=payload.client_payload,
        user_id=user_id,
    )

    try:
        token = await authorizer.authorize(upload_request)
    except AuthorizationError as e:
        logger.info(
            "Upload token refused",
            extra={"requested_pathname": payload.pathname, "reason": str(e)}
        )
        return _error(str(e))
    except StorageError as e:
        return _error(str(e))

    grant = token.grant
    response = ClientTokenResponse(
        pathname=grant.pathname,
        url=token.url,
        allowed_content_types=list(grant.allowed_content_types),
        add_random_suffix=grant.add_random_suffix,
        max_file_size=grant.max_file_size,
        token_payload=grant.token_payload,
        valid_until=int(grant.valid_until.timestamp() * 1000),
        upload=UploadTarget(
            method=token.upload_method,
            url=token.upload_url,
            fields=token.upload_fields,
            headers=token.upload_headers,
        ),
    )
    return JSONResponse(content=response.model_dump(mode="json", by_alias=True))


async def _upload_completed(
    payload: UploadCompletedPayload,
    authorizer: UploadAuthorizer,
) -> JSONResponse:
    blob = payload.blob
    completion = UploadCompletion(
        blob=StoredObject(
            pathname=blob.pathname,
            url=blob.url,
            size=blob.size,
            uploaded_at=blob.uploaded_at,
            content_type=blob.content_type,
        ),
        token_payload=payload.token_payload or "",
    )

    try:
        await authorizer.complete(completion)
    except PersistenceCallbackError as e:
        # The store retries until it sees a 2xx
        return _error(str(e))

    return JSONResponse(content=UploadCompletedResponse().model_dump(by_alias=True))
