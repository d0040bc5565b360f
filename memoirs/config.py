"""
Configuration and settings for the memories backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Database (Postgres expected)
    database_url: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")

    # S3-compatible storage
    s3_endpoint: Optional[str] = Field(default=None, validation_alias="S3_ENDPOINT")
    s3_region: Optional[str] = Field(default=None, validation_alias="S3_REGION")
    s3_bucket: Optional[str] = Field(default=None, validation_alias="S3_BUCKET")
    s3_public_base_url: Optional[str] = Field(
        default=None, validation_alias="S3_PUBLIC_BASE_URL"
    )
    aws_access_key_id: Optional[str] = Field(
        default=None, validation_alias="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, validation_alias="AWS_SECRET_ACCESS_KEY"
    )
    signed_url_expiry_seconds: int = Field(default=3600)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="MEMOIRS_USE_IN_MEMORY_BACKENDS"
    )

    # Identity: the upstream auth proxy forwards the principal id in this header.
    identity_header: str = Field(default="X-User-Id")
    founder_user_ids: list[str] = Field(default_factory=list)

    # Feed
    feed_page_size: int = Field(default=6)
    dashboard_page_size: int = Field(default=9)
    new_story_days: int = Field(default=7)

    # Uploads
    max_upload_bytes: int = Field(default=50 * 1024 * 1024)
    max_avatar_bytes: int = Field(default=5 * 1024 * 1024)
    max_images_per_story: int = Field(default=3)
    max_audio_per_story: int = Field(default=3)
    max_videos_per_story: int = Field(default=1)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
