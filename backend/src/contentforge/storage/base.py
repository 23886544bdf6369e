"""Blob store and image transform interfaces.

The engine never talks to a concrete blob store. It calls a BlobAdapter
for put/delete and, for image uploads, an ImageTransformer once per
declared size profile.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Protocol

from contentforge.schema.fields import SizeProfile


@dataclass
class StoredBlob:
    """Result of a successful put.

    Attributes:
        name: Final name in the store (may differ from the suggested name)
        url: Stable, publicly resolvable URL
        size: Stored size in bytes
        content_type: Stored content type
    """

    name: str
    url: str
    size: int
    content_type: str


@dataclass
class TransformedImage:
    """Output of an image transform for one size profile."""

    content: bytes
    content_type: str
    width: int | None = None
    height: int | None = None


class BlobAdapter(ABC):
    """Abstract base class for blob store adapters."""

    @abstractmethod
    async def put(self, content: bytes, name: str, content_type: str) -> StoredBlob:
        """Store content under (a variant of) name.

        Raises:
            StorageError: If the store rejects the write
        """

    @abstractmethod
    async def delete(self, name_or_url: str) -> None:
        """Delete a stored blob by name or URL.

        Deleting a blob that does not exist is not an error.

        Raises:
            StorageError: If the store fails to delete
        """


class ImageTransformer(Protocol):
    """External image-processing collaborator (resize/crop)."""

    async def transform(
        self, content: bytes, content_type: str, profile: SizeProfile
    ) -> TransformedImage:
        ...
