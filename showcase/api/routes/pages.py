"""
Gallery and upload pages.

Server-rendered shells; the pages fetch the catalog and drive uploads
from the browser.
"""

from pathlib import Path

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from ...core.videos.models import ALLOWED_CONTENT_TYPES
from ..dependencies import SettingsDep

router = APIRouter(tags=["Pages"])
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parents[2] / "templates"))


@router.get("/", response_class=HTMLResponse, include_in_schema=False)
async def gallery_page(request: Request, settings: SettingsDep):
    """Video grid with hover preview and full-screen playback."""
    return templates.TemplateResponse(request, "gallery.html", {
        "page_title": "Video Showcase",
        "catalog_url": "/api/videos",
        "upload_page_url": "/upload",
    })


@router.get("/upload", response_class=HTMLResponse, include_in_schema=False)
async def upload_page(request: Request, settings: SettingsDep):
    """Upload form. Bytes go straight to the store, not through this service."""
    return templates.TemplateResponse(request, "upload.html", {
        "page_title": "Upload Video",
        "handle_upload_url": "/api/uploads",
        "registry_url": "/api/registry/videos",
        "max_file_size": settings.max_upload_size_bytes,
        "max_file_size_mb": settings.max_upload_size_mb,
        "allowed_content_types": list(ALLOWED_CONTENT_TYPES),
    })
