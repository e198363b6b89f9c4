"""
Configuration and settings for the storefront backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="")
    port: int = Field(default=5001, validation_alias="PORT")
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    # S3-compatible object storage
    s3_endpoint: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default=None)
    s3_bucket: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)
    # The credentials need s3:ListBucket as well as Get/Put/DeleteObject. Without it
    # S3 answers 403 instead of 404 for missing documents and first access fails.

    # Base for externally resolvable asset URLs, e.g. a CDN in front of the bucket.
    public_base_url: Optional[str] = Field(default=None)

    # Object namespaces
    data_folder: str = Field(default="bstore_data")
    product_folder: str = Field(default="bstore_products")
    receipt_folder: str = Field(default="bstore_receipts")
    qrcode_folder: str = Field(default="bstore_qrcodes")

    max_upload_bytes: int = Field(default=5 * 1024 * 1024)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="BSTORE_USE_IN_MEMORY_BACKENDS"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
