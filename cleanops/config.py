"""
Configuration and settings for the cleaning operations backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO", env="LOG_LEVEL")

    # Document store (any SQLAlchemy URL)
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")

    # S3-compatible storage for cleaning photos
    s3_endpoint: Optional[str] = Field(default=None, env="S3_ENDPOINT")
    s3_region: Optional[str] = Field(default=None, env="S3_REGION")
    s3_bucket: Optional[str] = Field(default=None, env="S3_BUCKET")
    s3_public_base_url: Optional[str] = Field(
        default=None, env="S3_PUBLIC_BASE_URL"
    )
    aws_access_key_id: Optional[str] = Field(
        default=None, env="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, env="AWS_SECRET_ACCESS_KEY"
    )

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "CLEANOPS_USE_IN_MEMORY_BACKENDS", "use_in_memory_backends"
        ),
    )

    # Push notification queue (Redis)
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    redis_queue_key: str = Field(
        default="cleanops:push", env="REDIS_QUEUE_KEY"
    )
    firebase_credentials_path: Optional[str] = Field(
        default=None, env="FIREBASE_CREDENTIALS_PATH"
    )

    # Business rules
    min_photos_required: int = Field(default=10, env="MIN_PHOTOS_REQUIRED")
    max_upload_bytes: int = Field(
        default=10 * 1024 * 1024, env="MAX_UPLOAD_BYTES"
    )
    ratings_default_months: int = Field(
        default=3, env="RATINGS_DEFAULT_MONTHS"
    )
    local_edit_ttl_seconds: float = Field(
        default=30.0, env="LOCAL_EDIT_TTL_SECONDS"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
