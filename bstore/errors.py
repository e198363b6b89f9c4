"""
Error types shared by the storage layer, upload pipeline and handlers.
"""

from __future__ import annotations


class BStoreError(Exception):
    """Base error rendered to clients as ``{"error": message}``."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BStoreError):
    """Missing, oversized or otherwise unacceptable upload."""

    status_code = 400


class UnsupportedFormatError(ValidationError):
    """Upload whose content type or format is not on the allow-list."""


class NotFoundError(BStoreError):
    status_code = 404


class UpstreamStoreError(BStoreError):
    """Blob or document store I/O failure. Never retried."""

    status_code = 500


class UploadError(UpstreamStoreError):
    pass


class MalformedInputError(BStoreError):
    """Unparseable embedded JSON field.

    Callers convert this into a default value instead of surfacing it.
    """

    status_code = 400
