"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from fastapi import Depends

from bstore.config import Settings, get_settings
from bstore.documents import DocumentStore
from bstore.handlers import ProductHandler, ReceiptHandler, SettingsHandler
from bstore.storage import BlobStore, InMemoryBlobStore, S3BlobStore
from bstore.uploads import image_policy, qr_code_policy

_blob_store: BlobStore | None = None


def get_blob_store() -> BlobStore:
    """
    Return a singleton blob store so in-memory state persists across requests.
    """
    global _blob_store
    if _blob_store:
        return _blob_store

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.s3_bucket:
        _blob_store = InMemoryBlobStore()
    else:
        _blob_store = S3BlobStore(
            bucket=settings.s3_bucket,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            public_base_url=settings.public_base_url,
        )
    return _blob_store


def get_document_store(
    blobs: BlobStore = Depends(get_blob_store),
    settings: Settings = Depends(get_settings),
) -> DocumentStore:
    return DocumentStore(blobs, folder=settings.data_folder)


def get_product_handler(
    documents: DocumentStore = Depends(get_document_store),
    blobs: BlobStore = Depends(get_blob_store),
    settings: Settings = Depends(get_settings),
) -> ProductHandler:
    return ProductHandler(
        documents, blobs, image_policy(settings.product_folder, settings.max_upload_bytes)
    )


def get_receipt_handler(
    documents: DocumentStore = Depends(get_document_store),
    blobs: BlobStore = Depends(get_blob_store),
    settings: Settings = Depends(get_settings),
) -> ReceiptHandler:
    return ReceiptHandler(
        documents, blobs, image_policy(settings.receipt_folder, settings.max_upload_bytes)
    )


def get_settings_handler(
    documents: DocumentStore = Depends(get_document_store),
    blobs: BlobStore = Depends(get_blob_store),
    settings: Settings = Depends(get_settings),
) -> SettingsHandler:
    return SettingsHandler(
        documents, blobs, qr_code_policy(settings.qrcode_folder, settings.max_upload_bytes)
    )
