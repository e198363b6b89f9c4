"""
HTTP routes for the storefront backend.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import PlainTextResponse

from bstore.dependencies import (
    get_product_handler,
    get_receipt_handler,
    get_settings_handler,
)
from bstore.handlers import ProductHandler, ReceiptHandler, SettingsHandler
from bstore.schemas import (
    DeleteReceiptResponse,
    MessageResponse,
    ProductForm,
    ProductResponse,
    QrCodeResponse,
    ReceiptForm,
    ReceiptResponse,
)

router = APIRouter()


@router.get("/", response_class=PlainTextResponse)
def root():
    return "B-Store Server is running 🚀"


@router.post("/upload-qrcode", response_model=QrCodeResponse)
async def upload_qrcode(
    qr_code: Optional[UploadFile] = File(None, alias="qrCode"),
    handler: SettingsHandler = Depends(get_settings_handler),
):
    settings = await handler.set_qr_code(qr_code)
    return QrCodeResponse(
        success=True,
        message="QR Code updated",
        qrCodeUrl=settings.qrCodeUrl,
        assetId=settings.assetId,
    )


@router.get("/settings")
def get_store_settings(handler: SettingsHandler = Depends(get_settings_handler)):
    return handler.get()


@router.post("/upload", response_model=ReceiptResponse)
async def upload_receipt(
    receipt: Optional[UploadFile] = File(None),
    total: Optional[str] = Form(None),
    timestamp: Optional[str] = Form(None),
    note: Optional[str] = Form(None),
    cname: Optional[str] = Form(None),
    order_id: Optional[str] = Form(None, alias="orderId"),
    payment_method: Optional[str] = Form(None, alias="paymentMethod"),
    cart_items: Optional[str] = Form(None, alias="cartItems"),
    handler: ReceiptHandler = Depends(get_receipt_handler),
):
    form = ReceiptForm(
        total=total,
        timestamp=timestamp,
        note=note,
        cname=cname,
        order_id=order_id,
        payment_method=payment_method,
        cart_items=cart_items,
    )
    saved = await handler.create(form, receipt)
    return ReceiptResponse(message="Receipt saved", receipt=saved)


@router.get("/receipts")
def list_receipts(handler: ReceiptHandler = Depends(get_receipt_handler)):
    return handler.list()


@router.delete("/receipts/{order_id}", response_model=DeleteReceiptResponse)
def delete_receipt(
    order_id: str, handler: ReceiptHandler = Depends(get_receipt_handler)
):
    handler.delete(order_id)
    return DeleteReceiptResponse(message="Receipt deleted", orderId=order_id)


@router.get("/products")
def list_products(handler: ProductHandler = Depends(get_product_handler)):
    return handler.list()


@router.post("/products", response_model=ProductResponse)
async def create_product(
    image: Optional[UploadFile] = File(None),
    name: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    handler: ProductHandler = Depends(get_product_handler),
):
    form = ProductForm(name=name, price=price, description=description)
    product = await handler.create(form, image)
    return ProductResponse(message="Product added", product=product)


@router.put("/products/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: str,
    image: Optional[UploadFile] = File(None),
    name: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    handler: ProductHandler = Depends(get_product_handler),
):
    form = ProductForm(name=name, price=price, description=description)
    product = await handler.update(product_id, form, image)
    return ProductResponse(message="Product updated", product=product)


@router.delete("/products/{product_id}", response_model=MessageResponse)
def delete_product(
    product_id: str, handler: ProductHandler = Depends(get_product_handler)
):
    handler.delete(product_id)
    return MessageResponse(message="Product deleted")
