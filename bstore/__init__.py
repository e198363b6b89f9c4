"""
Backend package for the storefront admin panel.

This package provides a FastAPI application that accepts product, receipt
and QR-code uploads and keeps small JSON documents (products, receipts,
settings) as raw objects in S3-compatible object storage.
"""
