"""Core runtime types shared by every layer of the collection engine.

- Operation: the four document operations
- Principal: the already-authenticated actor making a request
- Document: a stored document as returned to callers
- AssetReference / PendingUpload: values of upload-type fields
- Page: pagination metadata for list reads
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Operation(Enum):
    """The type of operation being executed against a collection."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Principal:
    """The requesting actor, supplied by the authentication collaborator.

    Attributes:
        id: The user's id; None means anonymous
        role: Role tag from an open set ("admin", "user", ...)
        claims: Opaque extra claims passed through untouched
    """

    id: str | None = None
    role: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.id)


ANONYMOUS = Principal()


@dataclass
class Page:
    """Pagination metadata computed from the filtered count."""

    total: int
    limit: int | None
    offset: int = 0
    returned: int = 0

    @property
    def has_more(self) -> bool:
        if not self.limit:
            return False
        return (self.offset + self.returned) < self.total

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
            "hasMore": self.has_more,
        }


@dataclass
class AssetReference:
    """The value stored in an upload-type field.

    Attributes:
        document_id: Id of the upload-collection document owning the asset
        url: Publicly resolvable URL of the original
        mime_type: Content type of the original
        size: Size of the original in bytes
        derived_size_variants: Size profile name -> derived URL
        filename: Stored name of the original (used for deletes)
    """

    document_id: str | None
    url: str
    mime_type: str
    size: int
    derived_size_variants: dict[str, str] = field(default_factory=dict)
    filename: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "documentId": self.document_id,
            "url": self.url,
            "mimeType": self.mime_type,
            "size": self.size,
            "derivedSizeVariants": dict(self.derived_size_variants),
            "filename": self.filename,
        }

    @classmethod
    def from_value(cls, data: dict[str, Any]) -> "AssetReference":
        """Parse the nested-object form stored in documents."""
        return cls(
            document_id=data.get("documentId"),
            url=data["url"],
            mime_type=data.get("mimeType", "application/octet-stream"),
            size=int(data.get("size") or 0),
            derived_size_variants=dict(data.get("derivedSizeVariants") or {}),
            filename=data.get("filename"),
        )

    @classmethod
    def from_upload_document(cls, raw: dict[str, Any]) -> "AssetReference":
        """Build the reference from a stored upload-collection document."""
        return cls(
            document_id=raw["id"],
            url=raw.get("url", ""),
            mime_type=raw.get("mimeType", "application/octet-stream"),
            size=int(raw.get("filesize") or 0),
            derived_size_variants=dict(raw.get("sizes") or {}),
            filename=raw.get("filename"),
        )


@dataclass
class PendingUpload:
    """A binary payload submitted for an upload field, not yet stored.

    Attributes:
        content: Raw bytes
        filename: Suggested name from the client
        content_type: Declared MIME type
        fields: Extra field values for the upload-collection document (e.g. alt)
    """

    content: bytes
    filename: str
    content_type: str
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class Document:
    """A persisted document.

    Documents are never cached by the engine; every read re-fetches
    from the persistence collaborator.
    """

    id: str
    collection: str
    fields: dict[str, Any]
    created_at: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"id": self.id}
        result.update(self.fields)
        if self.created_at is not None:
            result["createdAt"] = self.created_at
        if self.updated_at is not None:
            result["updatedAt"] = self.updated_at
        return result

    @classmethod
    def from_raw(cls, collection: str, raw: dict[str, Any]) -> "Document":
        """Build a Document from a raw persistence row."""
        fields = {
            k: v for k, v in raw.items()
            if k not in ("id", "createdAt", "updatedAt")
        }
        return cls(
            id=raw["id"],
            collection=collection,
            fields=fields,
            created_at=raw.get("createdAt"),
            updated_at=raw.get("updatedAt"),
        )


def isoformat(value: datetime) -> str:
    """Serialize a timestamp the way documents store it."""
    return value.isoformat()
