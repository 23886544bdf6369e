"""Operation results returned by the document engine."""

from dataclasses import dataclass, field
from typing import Any

from contentforge.core.types import Document, Operation, Page
from contentforge.hooks.types import HookWarning


@dataclass
class OperationResult:
    """Outcome of one engine operation.

    Attributes:
        document: The created/updated/deleted or single read document
        documents: List read results
        page: Pagination metadata for list reads (counts the filtered set)
        warnings: After-stage hook and cross-collection failures; the
            operation itself succeeded
    """

    collection: str
    operation: Operation
    document: Document | None = None
    documents: list[Document] | None = None
    page: Page | None = None
    warnings: list[HookWarning] = field(default_factory=list)

    @property
    def data(self) -> dict[str, Any] | list[dict[str, Any]] | None:
        if self.documents is not None:
            return [d.to_dict() for d in self.documents]
        if self.document is not None:
            return self.document.to_dict()
        return None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"data": self.data}
        if self.page is not None:
            result["pagination"] = self.page.to_dict()
        result["warnings"] = [w.to_dict() for w in self.warnings]
        return result
