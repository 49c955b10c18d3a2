"""
Service configuration.

Values come from environment variables (or a .env file), matched
case-insensitively: R2_BUCKET_NAME sets r2_bucket_name. Bad types fail at
startup. Which storage fields are required depends on r2_mock_mode, so
that check lives in validate_required_fields() rather than in the
field definitions.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Everything the app reads from the environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Service
    api_title: str = "Video Showcase API"
    api_version: str = "v1"
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL clients reach this service on. Mock object URLs and the default callback URL build on it.",
    )
    log_level: str = Field(default="INFO", description="Root log level name")
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="Comma-separated origins allowed by CORS, or * to allow any",
    )

    # Blob store (Cloudflare R2, S3-compatible)
    r2_mock_mode: bool = Field(
        default=False,
        description="Keep uploads in memory and serve them from /api/blob instead of using R2",
    )
    r2_account_id: str = Field(default="", description="Account id, used to derive the endpoint")
    r2_endpoint_url: Optional[str] = Field(
        default=None,
        description="Explicit S3 endpoint. Overrides the one derived from r2_account_id.",
    )
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_bucket_name: str = "video-showcase"
    r2_public_base_url: Optional[str] = Field(
        default=None,
        description="Public bucket domain, e.g. https://videos.example.com. Playback URLs build on it.",
    )

    # Upload tokens and completion delivery
    upload_token_secret: str = Field(
        default="dev-upload-secret-change-me",
        description="Signs mock upload tokens and completion notification bodies",
    )
    upload_token_ttl_seconds: int = Field(default=3600, gt=0)
    max_upload_size_mb: int = Field(default=500, gt=0)
    upload_callback_url: Optional[str] = Field(
        default=None,
        description="Where completion notifications go. Defaults to {public_base_url}/api/uploads.",
    )
    completion_max_attempts: int = Field(default=5, ge=1)
    completion_retry_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Delay before the second attempt. Attempt n waits n times this.",
    )

    # Registry
    data_dir: str = Field(default="data", description="Holds videos.json and uploads.json")

    @property
    def cors_origins_list(self) -> list[str]:
        if self.cors_origins.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def r2_endpoint(self) -> str:
        return self.r2_endpoint_url or f"https://{self.r2_account_id}.r2.cloudflarestorage.com"

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def completion_callback_url(self) -> str:
        if self.upload_callback_url:
            return self.upload_callback_url
        return f"{self.public_base_url.rstrip('/')}/api/uploads"

    def validate_required_fields(self) -> list[str]:
        """
        Names of the environment variables still needed.

        Mock mode needs none. R2 needs credentials, an endpoint (account
        id or explicit URL) and the public domain playback URLs are built
        on.
        """
        if self.r2_mock_mode:
            return []

        required = {
            "R2_ACCOUNT_ID or R2_ENDPOINT_URL": self.r2_account_id or self.r2_endpoint_url,
            "R2_ACCESS_KEY_ID": self.r2_access_key_id,
            "R2_SECRET_ACCESS_KEY": self.r2_secret_access_key,
            "R2_PUBLIC_BASE_URL": self.r2_public_base_url,
        }
        return [name for name, value in required.items() if not value]


@lru_cache()
def get_settings() -> Settings:
    """Settings are read once per process. Tests override the dependency instead."""
    return Settings()
