"""
Validation and storage of multipart image uploads.

An upload is checked (size, declared content type, sniffed image format)
before it reaches the blob store, and before any document is read or written.
"""

from __future__ import annotations

import io
import logging
import time
from dataclasses import dataclass
from typing import Optional

from fastapi import UploadFile
from PIL import Image, UnidentifiedImageError

from bstore.errors import UnsupportedFormatError, ValidationError
from bstore.storage import BlobStore, StoredAsset

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 5 * 1024 * 1024
QR_CODE_ASSET_NAME = "store_qrcode"

# Pillow format name -> content type
_IMAGE_CONTENT_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
}


def timestamp_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class UploadPolicy:
    """Where an upload goes and what it may contain."""

    folder: str
    content_types: frozenset[str]
    allowed_formats: frozenset[str]
    max_bytes: int = MAX_UPLOAD_BYTES
    # Fixed name means every upload replaces the same object.
    fixed_name: Optional[str] = None

    @property
    def overwrite(self) -> bool:
        return self.fixed_name is not None

    def asset_name(self) -> str:
        return self.fixed_name or str(timestamp_ms())


def image_policy(folder: str, max_bytes: int = MAX_UPLOAD_BYTES) -> UploadPolicy:
    """Products and receipts: JPEG, PNG or GIF under a fresh timestamp name."""
    return UploadPolicy(
        folder=folder,
        content_types=frozenset({"image/jpeg", "image/png", "image/gif"}),
        allowed_formats=frozenset({"jpg", "jpeg", "png", "gif"}),
        max_bytes=max_bytes,
    )


def qr_code_policy(folder: str, max_bytes: int = MAX_UPLOAD_BYTES) -> UploadPolicy:
    """The store QR code: JPEG or PNG, always stored under the same name."""
    return UploadPolicy(
        folder=folder,
        content_types=frozenset({"image/jpeg", "image/png"}),
        allowed_formats=frozenset({"jpg", "jpeg", "png"}),
        max_bytes=max_bytes,
        fixed_name=QR_CODE_ASSET_NAME,
    )


def sniff_content_type(content: bytes) -> Optional[str]:
    """Return the content type implied by the image bytes, if recognised."""
    try:
        with Image.open(io.BytesIO(content)) as image:
            fmt = image.format
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError):
        return None
    return _IMAGE_CONTENT_TYPES.get(fmt or "")


def validate_image(
    content: bytes, declared_type: Optional[str], policy: UploadPolicy
) -> str:
    """Raise unless ``content`` is an acceptable image; return its content type."""
    if len(content) > policy.max_bytes:
        raise ValidationError(
            f"File too large; limit is {policy.max_bytes // (1024 * 1024)} MiB"
        )
    declared = (declared_type or "").split(";")[0].strip().lower()
    if declared not in policy.content_types:
        raise UnsupportedFormatError(f"Unsupported file type {declared or 'unknown'}")
    sniffed = sniff_content_type(content)
    if sniffed not in policy.content_types:
        raise UnsupportedFormatError("File content is not a supported image")
    return sniffed


async def store_upload(
    file: Optional[UploadFile], policy: UploadPolicy, blobs: BlobStore
) -> StoredAsset:
    """Validate ``file`` and upload it according to ``policy``."""
    if file is None or not file.filename:
        raise ValidationError("Image is required")

    # One byte past the limit is enough to detect an oversized file.
    content = await file.read(policy.max_bytes + 1)
    content_type = validate_image(content, file.content_type, policy)

    asset = blobs.upload(
        content,
        policy.folder,
        policy.asset_name(),
        overwrite=policy.overwrite,
        allowed_formats=policy.allowed_formats,
        filename=file.filename,
        content_type=content_type,
    )
    logger.info("Stored upload %s as %s", file.filename, asset.asset_id)
    return asset
