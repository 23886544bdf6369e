"""Types used by field validation."""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from contentforge.core.types import Operation

if TYPE_CHECKING:
    from contentforge.schema.registry import CollectionRegistry


class ReferenceLookup(Protocol):
    """Data access needed by relation/upload validation.

    The engine implements this on top of the persistence collaborator.
    """

    async def find_by_id(
        self, collection: str, document_id: str
    ) -> dict[str, Any] | None:
        """Return the raw document, or None if it does not exist."""
        ...


@dataclass
class ValidationContext:
    """Context for validating one document.

    Attributes:
        collection: Slug of the collection being written
        operation: CREATE or UPDATE
        registry: Used to resolve relation/upload targets lazily
        references: Existence checks against persistence
    """

    collection: str
    operation: Operation
    registry: "CollectionRegistry"
    references: ReferenceLookup
