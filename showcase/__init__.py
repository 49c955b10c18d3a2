"""
Video Showcase - upload videos to blob storage and browse them in a gallery.

This package contains the complete application:
- core: Framework-agnostic catalog and upload rules
- infrastructure: Blob storage and JSON-file persistence
- client: Upload driver for scripts and tests
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
