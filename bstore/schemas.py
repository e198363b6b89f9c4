"""
Pydantic schemas for stored records, form inputs and responses.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# Records written by the earlier deployment call the asset reference "cloudinaryId".
ASSET_ID_ALIASES = AliasChoices("assetId", "cloudinaryId")


class Product(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    id: int
    name: Optional[str] = None
    price: Optional[str] = None
    description: Optional[str] = None
    imageUrl: Optional[str] = None
    assetId: Optional[str] = Field(default=None, validation_alias=ASSET_ID_ALIASES)

    def to_record(self) -> dict:
        return self.model_dump(exclude_none=True)


class CartItem(BaseModel):
    """Cart line as stored on a receipt. Client payloads are loosely typed."""

    id: Any = None
    name: Any = None
    price: Any = None
    quantity: Any = None


class Receipt(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    orderId: str
    customerName: str = Field(
        default="", validation_alias=AliasChoices("customerName", "cname")
    )
    note: str = ""
    total: str = "0.00"
    paymentMethod: str = ""
    uploadedAt: str
    cartItems: list[CartItem] = Field(default_factory=list)
    receiptUrl: Optional[str] = None
    assetId: Optional[str] = Field(default=None, validation_alias=ASSET_ID_ALIASES)

    def to_record(self) -> dict:
        return self.model_dump(exclude_none=True)


class StoreSettings(BaseModel):
    model_config = ConfigDict(extra="allow")

    qrCodeUrl: str = ""
    assetId: Optional[str] = Field(default=None, validation_alias=ASSET_ID_ALIASES)


class ProductForm(BaseModel):
    """Text fields accompanying a product create/update request."""

    name: Optional[str] = None
    price: Optional[str] = None
    description: Optional[str] = None


class ReceiptForm(BaseModel):
    """Text fields accompanying a receipt upload.

    ``cart_items`` is the raw JSON-encoded string sent by the client.
    """

    total: Optional[str] = None
    timestamp: Optional[str] = None
    note: Optional[str] = None
    cname: Optional[str] = None
    order_id: Optional[str] = None
    payment_method: Optional[str] = None
    cart_items: Optional[str] = None


class ProductResponse(BaseModel):
    message: str
    product: dict


class ReceiptResponse(BaseModel):
    message: str
    receipt: dict


class DeleteReceiptResponse(BaseModel):
    message: str
    orderId: str


class MessageResponse(BaseModel):
    message: str


class QrCodeResponse(BaseModel):
    success: bool
    message: str
    qrCodeUrl: str
    assetId: str
