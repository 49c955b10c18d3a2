"""
Blob storage integration for uploaded videos.

Supports R2 (Cloudflare) and S3 (AWS) via S3-compatible API.
Includes mock mode for local development without credentials.
"""
