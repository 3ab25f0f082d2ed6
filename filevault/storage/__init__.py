"""Blob storage for uploaded file contents."""

from .blob_store import BlobStore, StorageRoot, generate_blob_name

__all__ = ["BlobStore", "StorageRoot", "generate_blob_name"]
