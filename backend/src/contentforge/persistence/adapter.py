"""PersistenceAdapter Protocol - shared interface for document stores.

Filters use the `where` format:

    {"status": {"eq": "published"}, "author.name": {"startsWith": "A"}}
    {"or": [{"ownerId": {"eq": "u1"}}, {"public": {"eq": True}}]}

Keys of one mapping are combined with AND; "and"/"or" take lists of
nested filters. Dotted field paths address values inside groups.
Supported operators: eq, neq, gt, gte, lt, lte, in, notIn, contains,
startsWith, isNull, isNotNull.
"""

from typing import Any, Protocol, runtime_checkable

from contentforge.schema.fields import CollectionSchema

WHERE_OPERATORS = frozenset({
    "eq", "neq", "gt", "gte", "lt", "lte", "in", "notIn",
    "contains", "startsWith", "isNull", "isNotNull",
})


@runtime_checkable
class PersistenceAdapter(Protocol):
    """Interface all persistence adapters must implement.

    Documents cross this boundary as plain dicts with an "id" key. Ids
    are assigned by the adapter on insert. Every backend failure is
    raised as PersistenceError; unique index violations as DuplicateKey.
    """

    def connect(self) -> None: ...

    def close(self) -> None: ...

    def initialize_collection(self, schema: CollectionSchema) -> None: ...

    def find(
        self,
        collection: str,
        where: dict[str, Any] | None = None,
        sort: list[dict[str, str]] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> dict[str, Any]:
        """Returns {"data": [...], "pagination": {"total", "limit", "offset", "hasMore"}}."""
        ...

    def find_by_id(
        self,
        collection: str,
        id: str,
        where: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None: ...

    def insert(self, collection: str, data: dict[str, Any]) -> dict[str, Any]: ...

    def update_by_id(
        self,
        collection: str,
        id: str,
        data: dict[str, Any],
        where: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None: ...

    def delete_by_id(
        self,
        collection: str,
        id: str,
        where: dict[str, Any] | None = None,
    ) -> bool: ...

    def count_matching(
        self, collection: str, where: dict[str, Any] | None = None
    ) -> int: ...
