"""
Upload driver for scripts and tests.

Speaks the same token protocol as the browser upload page.
"""

from .uploader import ProgressReader, VideoUploader

__all__ = ["ProgressReader", "VideoUploader"]
