"""Blob storage configuration and adapter factory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from contentforge.storage.base import BlobAdapter


@dataclass
class StorageConfig:
    """Blob storage configuration.

    Supports the "local" (filesystem) and "vercel" (Vercel Blob) backends.
    """

    backend: str = "local"
    media_root: str = "media"
    media_url: str = "/media"
    blob_token: str | None = None

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> StorageConfig:
        """Create config from environment variables.

        - CONTENTFORGE_STORAGE: local (default) or vercel
        - CONTENTFORGE_MEDIA_ROOT: directory for local blobs
          (default {base_path}/media)
        - CONTENTFORGE_MEDIA_URL: URL prefix local blobs are served under
        - BLOB_READ_WRITE_TOKEN: Vercel Blob token
        """
        default_root = str(base_path / "media") if base_path else "media"
        return cls(
            backend=os.environ.get("CONTENTFORGE_STORAGE", "local").lower(),
            media_root=os.environ.get("CONTENTFORGE_MEDIA_ROOT", default_root),
            media_url=os.environ.get("CONTENTFORGE_MEDIA_URL", "/media"),
            blob_token=os.environ.get("BLOB_READ_WRITE_TOKEN"),
        )


def create_blob_adapter(config: StorageConfig) -> BlobAdapter:
    """Create a blob adapter for the configured backend.

    Raises:
        ValueError: For unsupported backends.
    """
    if config.backend == "local":
        from contentforge.storage.local import LocalBlobAdapter

        return LocalBlobAdapter(config.media_root, config.media_url)

    if config.backend == "vercel":
        from contentforge.storage.vercel import VercelBlobAdapter

        return VercelBlobAdapter(config.blob_token)

    raise ValueError(f"Unsupported storage backend: {config.backend}")
