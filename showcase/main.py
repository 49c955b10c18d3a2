"""
Video Showcase web application.

create_app() builds the FastAPI app; the module-level `app` is what ASGI
servers import. Tests use the same app and swap providers through
app.dependency_overrides.

Run locally without a bucket:
    R2_MOCK_MODE=true uvicorn showcase.main:app --reload

Behind a process manager:
    gunicorn showcase.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api.routes import blob, health, pages, registry, uploads, videos
from .config.settings import Settings, get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logging.basicConfig(format=LOG_FORMAT, level=get_settings().log_level.upper())

logger = logging.getLogger(__name__)

API_DESCRIPTION = """
Upload videos straight to blob storage and browse them in a gallery.

1. `POST /api/uploads` with `blob.generate-client-token` returns an
   upload target that is valid for a single upload.
2. The client sends the file to `upload.url` with `upload.method`: a
   multipart POST with `upload.fields`, or a PUT of the raw bytes with
   `upload.headers`. Video bytes never pass through this service.
3. The store POSTs a signed `blob.upload-completed` to `/api/uploads`.
4. `GET /api/videos` lists the store, newest first.

Uploaders are not authenticated. Put authentication in front of
`/api/uploads` before exposing it.
"""

# (router, prefix, tag); pages are mounted at the root
ROUTERS = (
    (health.router, "/health", "Health"),
    (uploads.router, "/api/uploads", "Uploads"),
    (videos.router, "/api/videos", "Videos"),
    (registry.router, "/api/registry/videos", "Registry"),
    (blob.router, "/api/blob", "Mock Blob Store"),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Report the storage backend on startup. Incomplete config is logged, not fatal."""
    settings = get_settings()

    logger.info(
        "Video Showcase starting",
        extra={
            "version": __version__,
            "storage": "mock" if settings.r2_mock_mode else "r2",
            "bucket": settings.r2_bucket_name,
        }
    )

    missing = settings.validate_required_fields()
    if missing:
        logger.error(
            "Storage is not fully configured; uploads and listing will fail",
            extra={"missing_fields": missing}
        )

    yield

    logger.info("Video Showcase stopped")


def _add_cors(app: FastAPI, settings: Settings) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    # Full traceback goes to the log; the client only sees a generic message
    logger.error(
        "Unhandled error",
        extra={"path": request.url.path, "method": request.method},
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error. Please try again later."},
    )


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description=API_DESCRIPTION,
        lifespan=lifespan,
    )

    _add_cors(app, settings)

    for router, prefix, tag in ROUTERS:
        app.include_router(router, prefix=prefix, tags=[tag])
    app.include_router(pages.router)

    app.add_exception_handler(Exception, _unhandled_error)

    logger.debug("Application created", extra={"routes": len(app.routes)})

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "showcase.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
        log_level=get_settings().log_level.lower(),
    )
