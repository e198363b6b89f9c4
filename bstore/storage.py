"""
Blob storage for uploaded images and raw JSON documents.

Objects live under folder-scoped keys (``<folder>/<name>``) in an
S3-compatible bucket. An in-memory implementation with the same semantics
backs tests and local runs.
"""

from __future__ import annotations

import logging
import mimetypes
import os
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from bstore.errors import NotFoundError, UploadError, UnsupportedFormatError, UpstreamStoreError

logger = logging.getLogger(__name__)

_MISSING_KEY_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass(frozen=True)
class StoredAsset:
    url: str
    asset_id: str


@dataclass(frozen=True)
class DeleteResult:
    """Outcome of a best-effort delete. Callers are free to ignore it."""

    asset_id: str
    deleted: bool
    error: Optional[str] = None


class BlobStore(Protocol):
    """Defines the operations the API needs from object storage."""

    def upload(
        self,
        content: bytes,
        folder: str,
        name: str,
        *,
        overwrite: bool = False,
        allowed_formats: Optional[Iterable[str]] = None,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> StoredAsset:
        ...

    def fetch(self, asset_id: str) -> bytes:
        ...

    def delete(self, asset_id: str) -> None:
        ...

    def url_for(self, asset_id: str) -> str:
        ...


def normalize_asset_id(asset_id: str, folder: str) -> str:
    """
    Turn a stored asset reference back into the key that ``delete`` expects.

    Older records may hold the provider's file name (``"1699999999999.jpg"``)
    rather than the full key. The extension must be stripped and, when the
    reference has no ``/``, the folder prefix added back. Dropping the prefix
    targets an object at the bucket root instead of the real asset.
    """
    root, ext = os.path.splitext(asset_id)
    if ext:
        asset_id = root
    if "/" not in asset_id:
        asset_id = f"{folder}/{asset_id}"
    return asset_id


def asset_format(filename: Optional[str], content_type: Optional[str]) -> Optional[str]:
    """Return the lowercase format name (``"png"``, ``"jpg"``...) of an upload."""
    if filename:
        ext = os.path.splitext(filename)[1].lstrip(".").lower()
        if ext:
            return ext
    if content_type:
        ext = mimetypes.guess_extension(content_type.split(";")[0].strip())
        if ext:
            return ext.lstrip(".").lower()
    return None


def check_format(
    allowed_formats: Optional[Iterable[str]],
    filename: Optional[str],
    content_type: Optional[str],
) -> None:
    if allowed_formats is None:
        return
    allowed = {fmt.lower() for fmt in allowed_formats}
    fmt = asset_format(filename, content_type)
    if fmt not in allowed:
        raise UnsupportedFormatError(
            f"Format {fmt or 'unknown'!r} not allowed; expected one of {sorted(allowed)}"
        )


def delete_quietly(store: BlobStore, asset_id: str) -> DeleteResult:
    """Delete an asset without ever failing the caller's request."""
    try:
        store.delete(asset_id)
    except Exception as exc:
        logger.warning("Failed to delete asset %s: %s", asset_id, exc)
        return DeleteResult(asset_id=asset_id, deleted=False, error=str(exc))
    logger.info("Deleted asset %s", asset_id)
    return DeleteResult(asset_id=asset_id, deleted=True)


@dataclass
class InMemoryBlobStore:
    """Test double for object storage."""

    base_url: str = "https://example.test/storage"
    stored_objects: dict = field(default_factory=dict)
    content_types: dict = field(default_factory=dict)
    fail_deletes: bool = False
    writes: int = 0

    def reset(self) -> None:
        self.stored_objects.clear()
        self.content_types.clear()
        self.writes = 0

    def upload(
        self,
        content: bytes,
        folder: str,
        name: str,
        *,
        overwrite: bool = False,
        allowed_formats: Optional[Iterable[str]] = None,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> StoredAsset:
        check_format(allowed_formats, filename, content_type)
        key = f"{folder}/{name}"
        if overwrite or key not in self.stored_objects:
            self.stored_objects[key] = bytes(content)
            self.content_types[key] = content_type or "application/octet-stream"
            self.writes += 1
        return StoredAsset(url=self.url_for(key), asset_id=key)

    def fetch(self, asset_id: str) -> bytes:
        stored = self.stored_objects.get(asset_id)
        if stored is None:
            raise NotFoundError(f"Asset {asset_id} not found")
        return stored

    def delete(self, asset_id: str) -> None:
        if self.fail_deletes:
            raise UpstreamStoreError(f"Simulated delete failure for {asset_id}")
        self.stored_objects.pop(asset_id, None)
        self.content_types.pop(asset_id, None)

    def url_for(self, asset_id: str) -> str:
        return f"{self.base_url}/{asset_id}"


@dataclass
class S3BlobStore:
    """
    S3-compatible blob store client.
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    public_base_url: Optional[str] = None

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def _exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_KEY_CODES:
                return False
            raise
        return True

    def upload(
        self,
        content: bytes,
        folder: str,
        name: str,
        *,
        overwrite: bool = False,
        allowed_formats: Optional[Iterable[str]] = None,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> StoredAsset:
        check_format(allowed_formats, filename, content_type)
        key = f"{folder}/{name}"
        try:
            if not overwrite and self._exists(key):
                logger.info("Asset %s already exists, keeping it", key)
                return StoredAsset(url=self.url_for(key), asset_id=key)
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type or "application/octet-stream",
            )
        except (BotoCoreError, ClientError) as exc:
            logger.exception("Upload of %s failed", key)
            raise UploadError(f"Upload of {key} failed: {exc}") from exc
        return StoredAsset(url=self.url_for(key), asset_id=key)

    def fetch(self, asset_id: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=asset_id)
            return response["Body"].read()
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_KEY_CODES:
                raise NotFoundError(f"Asset {asset_id} not found") from exc
            raise UpstreamStoreError(f"Fetch of {asset_id} failed: {exc}") from exc
        except BotoCoreError as exc:
            raise UpstreamStoreError(f"Fetch of {asset_id} failed: {exc}") from exc

    def delete(self, asset_id: str) -> None:
        # S3 deletes of missing keys succeed, so an absent asset is not an error.
        try:
            self._client.delete_object(Bucket=self.bucket, Key=asset_id)
        except (BotoCoreError, ClientError) as exc:
            raise UpstreamStoreError(f"Delete of {asset_id} failed: {exc}") from exc

    def url_for(self, asset_id: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{asset_id}"
        host = (self.endpoint or f"https://s3.{self.region}.amazonaws.com").rstrip("/")
        scheme, _, netloc = host.partition("://")
        return f"{scheme}://{self.bucket}.{netloc}/{asset_id}"
