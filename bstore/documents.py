"""
JSON documents kept as raw objects in the blob store.

Each logical collection ("products", "receipts", "settings") is a single
object under the documents folder. Mutations follow read-modify-write:
``ensure(name, default)``, change the value in memory, ``save(name, value)``.
Nothing guards against concurrent writers; the last ``save`` wins.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Any

from bstore.errors import NotFoundError, UpstreamStoreError
from bstore.storage import BlobStore

logger = logging.getLogger(__name__)

DOCUMENT_CONTENT_TYPE = "application/json"


def dumps_document(value: Any) -> bytes:
    """Canonical text form of a stored document."""
    return json.dumps(value, indent=2, ensure_ascii=False).encode("utf-8")


class DocumentStore:
    """Load/ensure/save of whole JSON documents keyed by logical name."""

    def __init__(self, blobs: BlobStore, folder: str = "bstore_data"):
        self.blobs = blobs
        self.folder = folder

    def asset_id(self, name: str) -> str:
        return f"{self.folder}/{name}"

    def load(self, name: str) -> Any | None:
        """Return the stored document, or ``None`` when it does not exist yet."""
        try:
            raw = self.blobs.fetch(self.asset_id(name))
        except NotFoundError:
            logger.info("Document %s not found", name)
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            # Falling back to the default here would overwrite the stored data.
            raise UpstreamStoreError(f"Document {name} is not valid JSON") from exc

    def ensure(self, name: str, default: Any) -> Any:
        """
        Load ``name``, creating it from ``default`` when absent.

        The read and the write are separate round trips, so two first-access
        calls can race and either write may win.
        """
        value = self.load(name)
        if value is None:
            value = copy.deepcopy(default)
            self.save(name, value)
        return value

    def save(self, name: str, value: Any) -> None:
        self.blobs.upload(
            dumps_document(value),
            self.folder,
            name,
            overwrite=True,
            content_type=DOCUMENT_CONTENT_TYPE,
        )
        logger.info("Saved document %s", name)
