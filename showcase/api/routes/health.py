"""
Liveness and readiness probes.

- /health answers as long as the process can serve a request. It never
  touches the blob store.
- /health/ready checks what uploads and the gallery depend on: complete
  storage configuration, a listable blob store and a writable data
  directory for the registry. Any failing check turns it into a 503.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from ... import __version__
from ..dependencies import BlobStoreDep, SettingsDep

logger = logging.getLogger(__name__)

router = APIRouter()


class LivenessResponse(BaseModel):
    status: str
    version: str
    storage: str  # "r2" or "mock"


class ComponentCheck(BaseModel):
    """One readiness probe. detail carries the failure, or a note."""
    name: str
    ok: bool
    detail: Optional[str] = None


class ReadinessResponse(BaseModel):
    status: str  # "ready" or "not_ready"
    version: str
    checks: list[ComponentCheck]


def _storage_backend(mock_mode: bool) -> str:
    return "mock" if mock_mode else "r2"


@router.get(
    "",
    response_model=LivenessResponse,
    summary="Liveness probe",
    description="200 whenever the process is up. External services are not contacted.",
)
async def liveness(settings: SettingsDep) -> LivenessResponse:
    return LivenessResponse(
        status="ok",
        version=__version__,
        storage=_storage_backend(settings.r2_mock_mode),
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness probe",
    description="Checks storage configuration, the blob store listing and the data directory.",
    responses={503: {"description": "A dependency is unavailable", "model": ReadinessResponse}},
)
async def readiness(
    response: Response,
    settings: SettingsDep,
    store: BlobStoreDep,
) -> ReadinessResponse:
    missing = settings.validate_required_fields()
    checks = [
        ComponentCheck(
            name="configuration",
            ok=not missing,
            detail=f"Missing: {', '.join(missing)}" if missing else None,
        ),
    ]

    try:
        objects = await store.list_objects()
    except Exception as e:
        logger.error("Blob store probe failed", extra={"error": str(e)})
        checks.append(ComponentCheck(name="blob_store", ok=False, detail=str(e)))
    else:
        checks.append(ComponentCheck(
            name="blob_store",
            ok=True,
            detail=f"{_storage_backend(settings.r2_mock_mode)}, {len(objects)} objects",
        ))

    data_dir = Path(settings.data_dir)
    # A missing directory is created on the first write
    writable = not data_dir.exists() or (data_dir.is_dir() and os.access(data_dir, os.W_OK))
    checks.append(ComponentCheck(
        name="data_dir",
        ok=writable,
        detail=None if writable else f"{data_dir} is not writable",
    ))

    ready = all(check.ok for check in checks)
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        logger.warning(
            "Service not ready",
            extra={"failed_checks": [c.name for c in checks if not c.ok]}
        )

    return ReadinessResponse(
        status="ready" if ready else "not_ready",
        version=__version__,
        checks=checks,
    )
