"""
Products, receipts and store settings.

Every operation is one request/response transaction: an optional upload,
then a read-modify-write of the whole collection document.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import UploadFile

from bstore.documents import DocumentStore
from bstore.errors import MalformedInputError, NotFoundError
from bstore.schemas import (
    CartItem,
    Product,
    ProductForm,
    Receipt,
    ReceiptForm,
    StoreSettings,
)
from bstore.storage import BlobStore, DeleteResult, delete_quietly, normalize_asset_id
from bstore.uploads import UploadPolicy, store_upload, timestamp_ms

logger = logging.getLogger(__name__)

PRODUCTS = "products"
RECEIPTS = "receipts"
SETTINGS = "settings"

DEFAULT_SETTINGS = {"qrCodeUrl": ""}


def _utc_now_iso() -> str:
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def decode_cart_items(raw: Optional[str]) -> list[dict]:
    """Parse the JSON-encoded cart sent with a receipt.

    Raises ``MalformedInputError`` when the payload is not a JSON array.
    """
    try:
        items = json.loads(raw) if raw is not None else None
    except (TypeError, ValueError) as exc:
        raise MalformedInputError("cartItems is not valid JSON") from exc
    if not isinstance(items, list):
        raise MalformedInputError("cartItems is not a JSON array")
    return [item for item in items if isinstance(item, dict)]


def project_cart_items(raw: Optional[str]) -> list[CartItem]:
    """Cart lines reduced to id/name/price/quantity; bad payloads become []."""
    try:
        items = decode_cart_items(raw)
    except MalformedInputError as exc:
        logger.warning("Dropping cart payload: %s", exc)
        return []
    return [
        CartItem(
            id=item.get("id"),
            name=item.get("name"),
            price=item.get("price"),
            quantity=item.get("quantity"),
        )
        for item in items
    ]


def _parse_product_id(value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise NotFoundError("Product not found") from None


class ProductHandler:
    def __init__(self, documents: DocumentStore, blobs: BlobStore, images: UploadPolicy):
        self.documents = documents
        self.blobs = blobs
        self.images = images

    def _discard_image(self, asset_id: Optional[str]) -> Optional[DeleteResult]:
        if not asset_id:
            return None
        return delete_quietly(self.blobs, normalize_asset_id(asset_id, self.images.folder))

    def list(self) -> list:
        return self.documents.ensure(PRODUCTS, [])

    async def create(self, form: ProductForm, image: Optional[UploadFile]) -> dict:
        asset = await store_upload(image, self.images, self.blobs)

        products = self.documents.ensure(PRODUCTS, [])
        product = Product(
            id=timestamp_ms(),
            name=form.name,
            price=form.price,
            description=form.description,
            imageUrl=asset.url,
            assetId=asset.asset_id,
        ).to_record()
        products.append(product)
        self.documents.save(PRODUCTS, products)
        logger.info("Created product %s", product["id"])
        return product

    async def update(
        self, product_id: str, form: ProductForm, image: Optional[UploadFile]
    ) -> dict:
        asset = None
        if image is not None and image.filename:
            asset = await store_upload(image, self.images, self.blobs)

        pid = _parse_product_id(product_id)
        products = self.documents.ensure(PRODUCTS, [])
        index = next((i for i, p in enumerate(products) if p.get("id") == pid), None)
        if index is None:
            raise NotFoundError("Product not found")

        current = Product.model_validate(products[index])
        updates = {}
        if asset is not None:
            self._discard_image(current.assetId)
            updates["imageUrl"] = asset.url
            updates["assetId"] = asset.asset_id
        # Empty strings keep the stored value, same as an absent field.
        for name in ("name", "price", "description"):
            value = getattr(form, name)
            if value:
                updates[name] = value

        product = current.model_copy(update=updates).to_record()
        products[index] = product
        self.documents.save(PRODUCTS, products)
        logger.info("Updated product %s", pid)
        return product

    def delete(self, product_id: str) -> Optional[DeleteResult]:
        pid = _parse_product_id(product_id)
        products = self.documents.ensure(PRODUCTS, [])
        index = next((i for i, p in enumerate(products) if p.get("id") == pid), None)
        if index is None:
            raise NotFoundError("Product not found")

        product = Product.model_validate(products[index])
        result = self._discard_image(product.assetId)

        del products[index]
        self.documents.save(PRODUCTS, products)
        logger.info("Deleted product %s", pid)
        return result


class ReceiptHandler:
    def __init__(self, documents: DocumentStore, blobs: BlobStore, images: UploadPolicy):
        self.documents = documents
        self.blobs = blobs
        self.images = images

    def list(self) -> list:
        return self.documents.ensure(RECEIPTS, [])

    async def create(self, form: ReceiptForm, image: Optional[UploadFile]) -> dict:
        asset = None
        if image is not None and image.filename:
            asset = await store_upload(image, self.images, self.blobs)

        receipt = Receipt(
            orderId=form.order_id or f"ORD{timestamp_ms()}",
            customerName=form.cname or "",
            note=form.note or "",
            total=form.total or "0.00",
            paymentMethod=form.payment_method or "",
            uploadedAt=form.timestamp or _utc_now_iso(),
            cartItems=project_cart_items(form.cart_items),
            receiptUrl=asset.url if asset else None,
            assetId=asset.asset_id if asset else None,
        ).to_record()

        receipts = self.documents.ensure(RECEIPTS, [])
        receipts.insert(0, receipt)
        self.documents.save(RECEIPTS, receipts)
        logger.info("Saved receipt %s", receipt["orderId"])
        return receipt

    def delete(self, order_id: str) -> Optional[DeleteResult]:
        receipts = self.documents.ensure(RECEIPTS, [])
        index = next(
            (i for i, r in enumerate(receipts) if r.get("orderId") == order_id), None
        )
        if index is None:
            raise NotFoundError("Receipt not found")

        removed = receipts.pop(index)
        self.documents.save(RECEIPTS, receipts)
        logger.info("Deleted receipt %s", order_id)
        asset_id = removed.get("assetId") or removed.get("cloudinaryId")
        if not asset_id:
            return None
        return delete_quietly(self.blobs, normalize_asset_id(asset_id, self.images.folder))


class SettingsHandler:
    def __init__(self, documents: DocumentStore, blobs: BlobStore, qr_code: UploadPolicy):
        self.documents = documents
        self.blobs = blobs
        self.qr_code = qr_code

    def get(self) -> dict:
        return self.documents.ensure(SETTINGS, DEFAULT_SETTINGS)

    async def set_qr_code(self, image: Optional[UploadFile]) -> StoreSettings:
        asset = await store_upload(image, self.qr_code, self.blobs)
        # Fixed object name; the version query changes on every upload.
        url = f"{asset.url}?v={timestamp_ms()}"
        settings = StoreSettings(qrCodeUrl=url, assetId=asset.asset_id)
        self.documents.save(SETTINGS, settings.model_dump(exclude_none=True))
        logger.info("QR code updated (%s)", asset.asset_id)
        return settings
