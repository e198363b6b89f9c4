import io
import json
import struct
import unittest
import zlib
from unittest.mock import patch

from fastapi.testclient import TestClient
from PIL import Image

from bstore.app import create_app
from bstore.config import get_settings
from bstore.dependencies import get_blob_store
from bstore.documents import DocumentStore
from bstore.errors import UploadError
from bstore.storage import InMemoryBlobStore

PRODUCTS_KEY = "bstore_data/products"
RECEIPTS_KEY = "bstore_data/receipts"


def _image_bytes(fmt: str = "PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), "blue").save(buf, format=fmt)
    return buf.getvalue()


def _png(name: str = "cake.png"):
    return (name, _image_bytes(), "image/png")


def _oversized_png_header(width: int = 30000, height: int = 30000) -> bytes:
    """A PNG whose header claims far more pixels than Pillow will open."""

    def chunk(kind: bytes, data: bytes) -> bytes:
        return (
            struct.pack(">I", len(data))
            + kind
            + data
            + struct.pack(">I", zlib.crc32(kind + data) & 0xFFFFFFFF)
        )

    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + chunk(b"IHDR", ihdr)
        + chunk(b"IDAT", zlib.compress(b""))
        + chunk(b"IEND", b"")
    )


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.blobs = InMemoryBlobStore()
        self.app = create_app()
        self.app.dependency_overrides[get_blob_store] = lambda: self.blobs
        self.client = TestClient(self.app)
        self.documents = DocumentStore(self.blobs, folder=get_settings().data_folder)

    def _create_product(self, **fields):
        data = {"name": "Cake", "price": "4.50", "description": "Chocolate"}
        data.update(fields)
        response = self.client.post("/products", data=data, files={"image": _png()})
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()["product"]


class RootTests(ApiTestCase):
    def test_root(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertIn("running", response.text)


class SettingsApiTests(ApiTestCase):
    def test_settings_default(self):
        response = self.client.get("/settings")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"qrCodeUrl": ""})
        self.assertEqual(self.documents.load("settings"), {"qrCodeUrl": ""})

    def test_upload_qrcode(self):
        response = self.client.post("/upload-qrcode", files={"qrCode": _png("qr.png")})
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["message"], "QR Code updated")
        self.assertEqual(payload["assetId"], "bstore_qrcodes/store_qrcode")
        self.assertTrue(
            payload["qrCodeUrl"].startswith(self.blobs.url_for(payload["assetId"]) + "?v=")
        )

        settings = self.client.get("/settings").json()
        self.assertEqual(settings["qrCodeUrl"], payload["qrCodeUrl"])
        self.assertEqual(settings["assetId"], payload["assetId"])

    def test_upload_qrcode_replaces_same_object(self):
        self.client.post("/upload-qrcode", files={"qrCode": _png("a.png")})
        jpeg = _image_bytes("JPEG")
        self.client.post("/upload-qrcode", files={"qrCode": ("b.jpg", jpeg, "image/jpeg")})
        qr_keys = [k for k in self.blobs.stored_objects if k.startswith("bstore_qrcodes/")]
        self.assertEqual(qr_keys, ["bstore_qrcodes/store_qrcode"])
        self.assertEqual(self.blobs.fetch("bstore_qrcodes/store_qrcode"), jpeg)

    def test_upload_qrcode_missing_file(self):
        response = self.client.post("/upload-qrcode")
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())
        self.assertIsNone(self.documents.load("settings"))


class ProductApiTests(ApiTestCase):
    def test_create_and_list(self):
        product = self._create_product()
        self.assertEqual(product["name"], "Cake")
        self.assertEqual(product["price"], "4.50")
        self.assertTrue(product["assetId"].startswith("bstore_products/"))
        self.assertIn(product["assetId"], self.blobs.stored_objects)
        self.assertIsInstance(product["id"], int)

        listed = self.client.get("/products").json()
        self.assertEqual(listed, [product])

    def test_list_empty(self):
        response = self.client.get("/products")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), [])

    def test_create_requires_image(self):
        response = self.client.post("/products", data={"name": "Cake"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Image is required"})
        self.assertNotIn(PRODUCTS_KEY, self.blobs.stored_objects)

    def test_update_keeps_missing_fields(self):
        product = self._create_product()
        response = self.client.put(f"/products/{product['id']}", data={"price": "9.99"})
        self.assertEqual(response.status_code, 200, response.text)
        updated = response.json()["product"]
        self.assertEqual(updated["price"], "9.99")
        self.assertEqual(updated["name"], "Cake")
        self.assertEqual(updated["description"], "Chocolate")
        self.assertEqual(updated["imageUrl"], product["imageUrl"])
        self.assertEqual(self.documents.load("products"), [updated])

    def test_update_with_new_image_replaces_asset(self):
        with patch("bstore.uploads.timestamp_ms", side_effect=[1000, 2000]):
            product = self._create_product()
            response = self.client.put(
                f"/products/{product['id']}", files={"image": _png("new.png")}
            )
        self.assertEqual(response.status_code, 200, response.text)
        updated = response.json()["product"]
        self.assertEqual(updated["assetId"], "bstore_products/2000")
        self.assertNotIn("bstore_products/1000", self.blobs.stored_objects)
        self.assertIn("bstore_products/2000", self.blobs.stored_objects)

    def test_update_survives_failed_old_image_delete(self):
        with patch("bstore.uploads.timestamp_ms", side_effect=[1000, 2000]):
            product = self._create_product()
            self.blobs.fail_deletes = True
            response = self.client.put(
                f"/products/{product['id']}", files={"image": _png("new.png")}
            )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["product"]["assetId"], "bstore_products/2000")

    def test_delete(self):
        product = self._create_product()
        response = self.client.delete(f"/products/{product['id']}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"message": "Product deleted"})
        self.assertEqual(self.client.get("/products").json(), [])
        self.assertNotIn(product["assetId"], self.blobs.stored_objects)

    def test_delete_when_blob_delete_fails(self):
        product = self._create_product()
        self.blobs.fail_deletes = True
        response = self.client.delete(f"/products/{product['id']}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get("/products").json(), [])
        self.assertIn(product["assetId"], self.blobs.stored_objects)

    def test_delete_legacy_record_normalizes_asset_id(self):
        self.blobs.upload(b"old", "bstore_products", "1699999999999")
        self.documents.save(
            "products",
            [{"id": 1, "name": "Old", "imageUrl": "https://x", "cloudinaryId": "1699999999999.jpg"}],
        )
        response = self.client.delete("/products/1")
        self.assertEqual(response.status_code, 200)
        self.assertNotIn("bstore_products/1699999999999", self.blobs.stored_objects)

    def test_unknown_id(self):
        self._create_product()
        before = self.blobs.stored_objects[PRODUCTS_KEY]
        for method, path in (
            ("put", "/products/123"),
            ("delete", "/products/123"),
            ("delete", "/products/not-a-number"),
        ):
            with self.subTest(method=method, path=path):
                response = self.client.request(method, path)
                self.assertEqual(response.status_code, 404)
                self.assertEqual(response.json(), {"error": "Product not found"})
        self.assertEqual(self.blobs.stored_objects[PRODUCTS_KEY], before)

    def test_rejects_oversized_image(self):
        self._create_product()
        before = self.blobs.stored_objects[PRODUCTS_KEY]
        big = b"\x89PNG\r\n\x1a\n" + b"\0" * (5 * 1024 * 1024)
        response = self.client.post(
            "/products", data={"name": "Big"}, files={"image": ("big.png", big, "image/png")}
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("too large", response.json()["error"])
        self.assertEqual(self.blobs.stored_objects[PRODUCTS_KEY], before)

    def test_rejects_unsupported_type(self):
        self._create_product()
        before = self.blobs.stored_objects[PRODUCTS_KEY]
        response = self.client.post(
            "/products",
            data={"name": "Doc"},
            files={"image": ("notes.txt", b"hello", "text/plain")},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.blobs.stored_objects[PRODUCTS_KEY], before)


class ReceiptApiTests(ApiTestCase):
    def test_receipts_newest_first(self):
        for order_id in ("A", "B", "C"):
            response = self.client.post("/upload", data={"orderId": order_id, "total": "1.00"})
            self.assertEqual(response.status_code, 200, response.text)
        listed = self.client.get("/receipts").json()
        self.assertEqual([r["orderId"] for r in listed], ["C", "B", "A"])

    def test_defaults(self):
        response = self.client.post("/upload", data={"cname": "Dara"})
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual(payload["message"], "Receipt saved")
        receipt = payload["receipt"]
        self.assertTrue(receipt["orderId"].startswith("ORD"))
        self.assertEqual(receipt["customerName"], "Dara")
        self.assertEqual(receipt["total"], "0.00")
        self.assertEqual(receipt["note"], "")
        self.assertEqual(receipt["paymentMethod"], "")
        self.assertEqual(receipt["cartItems"], [])
        self.assertTrue(receipt["uploadedAt"].endswith("Z"))
        self.assertNotIn("receiptUrl", receipt)

    def test_cart_items_projected(self):
        cart = [{"id": 1, "name": "Tea", "price": "2.00", "quantity": 3, "imageUrl": "x"}]
        response = self.client.post(
            "/upload",
            data={"orderId": "ORD1", "cartItems": json.dumps(cart), "timestamp": "2024-05-01T10:00:00.000Z"},
        )
        receipt = response.json()["receipt"]
        self.assertEqual(receipt["cartItems"], [{"id": 1, "name": "Tea", "price": "2.00", "quantity": 3}])
        self.assertEqual(receipt["uploadedAt"], "2024-05-01T10:00:00.000Z")

    def test_malformed_cart_items(self):
        response = self.client.post("/upload", data={"orderId": "X", "cartItems": "{not json"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["receipt"]["cartItems"], [])
        self.assertEqual(self.documents.load("receipts")[0]["cartItems"], [])

    def test_receipt_with_image(self):
        response = self.client.post(
            "/upload", data={"orderId": "IMG"}, files={"receipt": _png("r.png")}
        )
        self.assertEqual(response.status_code, 200, response.text)
        receipt = response.json()["receipt"]
        self.assertTrue(receipt["assetId"].startswith("bstore_receipts/"))
        self.assertTrue(receipt["receiptUrl"].endswith(receipt["assetId"]))

        response = self.client.delete("/receipts/IMG")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"message": "Receipt deleted", "orderId": "IMG"})
        self.assertNotIn(receipt["assetId"], self.blobs.stored_objects)
        self.assertEqual(self.client.get("/receipts").json(), [])

    def test_delete_unknown_receipt(self):
        self.client.post("/upload", data={"orderId": "A"})
        before = self.blobs.stored_objects[RECEIPTS_KEY]
        response = self.client.delete("/receipts/missing")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Receipt not found"})
        self.assertEqual(self.blobs.stored_objects[RECEIPTS_KEY], before)

    def test_rejected_image_creates_no_receipt(self):
        response = self.client.post(
            "/upload",
            data={"orderId": "BAD"},
            files={"receipt": ("r.txt", b"hello", "text/plain")},
        )
        self.assertEqual(response.status_code, 400)
        self.assertNotIn(RECEIPTS_KEY, self.blobs.stored_objects)


class ErrorResponseTests(ApiTestCase):
    def test_oversized_image_header_is_rejected(self):
        response = self.client.post(
            "/products",
            data={"name": "Huge"},
            files={"image": ("huge.png", _oversized_png_header(), "image/png")},
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())
        self.assertNotIn(PRODUCTS_KEY, self.blobs.stored_objects)

    def test_unexpected_failure_is_json(self):
        self.documents.save("receipts", {"a": 1})
        client = TestClient(self.app, raise_server_exceptions=False)
        response = client.post("/upload", data={"orderId": "A"})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "Internal server error"})
        self.assertEqual(self.documents.load("receipts"), {"a": 1})

    def test_document_save_failure_keeps_uploaded_image(self):
        upload = self.blobs.upload

        def failing_document_upload(content, folder, name, **kwargs):
            if folder == get_settings().data_folder:
                raise UploadError(f"Upload of {folder}/{name} failed")
            return upload(content, folder, name, **kwargs)

        with patch.object(self.blobs, "upload", side_effect=failing_document_upload):
            response = self.client.post(
                "/upload", data={"orderId": "A"}, files={"receipt": _png("r.png")}
            )
        self.assertEqual(response.status_code, 500)
        self.assertIn("failed", response.json()["error"])
        images = [k for k in self.blobs.stored_objects if k.startswith("bstore_receipts/")]
        self.assertEqual(len(images), 1)
        self.assertNotIn(RECEIPTS_KEY, self.blobs.stored_objects)


if __name__ == "__main__":
    unittest.main()
