"""Binary asset storage - blob adapters and the asset service."""

from contentforge.storage.base import BlobAdapter, ImageTransformer, StoredBlob, TransformedImage
from contentforge.storage.config import StorageConfig, create_blob_adapter
from contentforge.storage.service import AssetService, sanitize_filename

__all__ = [
    "AssetService",
    "BlobAdapter",
    "ImageTransformer",
    "StorageConfig",
    "StoredBlob",
    "TransformedImage",
    "create_blob_adapter",
    "sanitize_filename",
]
