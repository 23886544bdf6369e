"""Local filesystem blob adapter."""

import logging
from pathlib import Path

from contentforge.core.errors import StorageError
from contentforge.storage.base import BlobAdapter, StoredBlob

logger = logging.getLogger(__name__)


class LocalBlobAdapter(BlobAdapter):
    """Stores blobs as files under a root directory.

    Files are served by whatever sits in front of base_url (a static file
    server in development). Existing files are never overwritten; a numeric
    suffix is added instead (photo.jpg, photo-1.jpg, ...).
    """

    def __init__(self, root: str | Path, base_url: str = "/media"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    async def put(self, content: bytes, name: str, content_type: str) -> StoredBlob:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            path = self._free_path(name)
            path.write_bytes(content)
        except OSError as e:
            raise StorageError(f"Failed to store '{name}': {e}") from e

        logger.debug("Stored %s (%d bytes) at %s", name, len(content), path)
        return StoredBlob(
            name=path.name,
            url=f"{self.base_url}/{path.name}",
            size=len(content),
            content_type=content_type,
        )

    async def delete(self, name_or_url: str) -> None:
        path = self.root / self._name_from(name_or_url)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete '{name_or_url}': {e}") from e

    def _name_from(self, name_or_url: str) -> str:
        if name_or_url.startswith(self.base_url + "/"):
            name_or_url = name_or_url[len(self.base_url) + 1:]
        # Only bare names under root are addressable
        return Path(name_or_url).name

    def _free_path(self, name: str) -> Path:
        path = self.root / Path(name).name
        counter = 1
        while path.exists():
            path = self.root / f"{Path(name).stem}-{counter}{Path(name).suffix}"
            counter += 1
        return path
