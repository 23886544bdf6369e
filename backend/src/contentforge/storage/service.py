"""Asset storage service.

Stores upload originals and their derived size variants through a
BlobAdapter and produces the AssetReference kept in documents.
"""

import logging
import re
from pathlib import PurePosixPath
from typing import Any

from contentforge.core.types import AssetReference
from contentforge.schema.fields import SizeProfile
from contentforge.storage.base import BlobAdapter, ImageTransformer

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_filename(name: str) -> str:
    """Reduce a client-supplied name to a safe bare filename."""
    base = PurePosixPath(name.replace("\\", "/")).name
    cleaned = _UNSAFE_CHARS.sub("-", base).strip("-.")
    return cleaned or "file"


def variant_filename(filename: str, profile: SizeProfile) -> str:
    path = PurePosixPath(filename)
    return f"{path.stem}-{profile.name}{path.suffix}"


class AssetService:
    """Puts and deletes assets, including derived size variants.

    Args:
        adapter: Blob store adapter
        transformer: Image transform collaborator; without one no variants
            are produced
    """

    def __init__(self, adapter: BlobAdapter, transformer: ImageTransformer | None = None):
        self.adapter = adapter
        self.transformer = transformer

    async def put(
        self,
        content: bytes,
        suggested_name: str,
        content_type: str,
        profiles: list[SizeProfile] | None = None,
    ) -> AssetReference:
        """Store the original and one variant per size profile.

        A failing variant is logged and left out of derivedSizeVariants; it
        never fails the upload.

        Raises:
            StorageError: If the original cannot be stored
        """
        filename = sanitize_filename(suggested_name)
        stored = await self.adapter.put(content, filename, content_type)

        variants: dict[str, str] = {}
        if profiles and content_type.startswith("image/"):
            if self.transformer is None:
                logger.debug("No image transformer configured, skipping size variants")
            else:
                for profile in profiles:
                    url = await self._put_variant(content, stored.name, content_type, profile)
                    if url is not None:
                        variants[profile.name] = url

        return AssetReference(
            document_id=None,
            url=stored.url,
            mime_type=stored.content_type,
            size=stored.size,
            derived_size_variants=variants,
            filename=stored.name,
        )

    async def _put_variant(
        self,
        content: bytes,
        filename: str,
        content_type: str,
        profile: SizeProfile,
    ) -> str | None:
        try:
            image = await self.transformer.transform(content, content_type, profile)
            stored = await self.adapter.put(
                image.content, variant_filename(filename, profile), image.content_type
            )
        except Exception as e:
            logger.warning(
                "Size variant '%s' for %s failed, omitting it: %s",
                profile.name, filename, e,
            )
            return None
        return stored.url

    async def delete(self, reference: AssetReference | dict[str, Any] | str) -> None:
        """Delete an asset's original and all of its variants.

        Raises:
            StorageError: On the first failing delete
        """
        if isinstance(reference, str):
            await self.adapter.delete(reference)
            return

        if isinstance(reference, dict):
            reference = AssetReference.from_value(reference)

        await self.adapter.delete(reference.url or reference.filename or "")
        for url in reference.derived_size_variants.values():
            await self.adapter.delete(url)
