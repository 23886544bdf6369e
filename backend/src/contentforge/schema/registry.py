"""Collection registry.

An explicitly constructed value mapping slugs to schemas. It is filled
during startup, frozen, and then only read; the engine receives it by
reference, so several independent registries can coexist in one process.
"""

from collections.abc import Iterator

from contentforge.core.errors import DuplicateSlug, RegistryFrozen, UnknownCollection
from contentforge.schema.fields import CollectionSchema


class CollectionRegistry:
    """Slug -> CollectionSchema mapping, read-only once frozen.

    Example:
        registry = CollectionRegistry()
        registry.register(posts_schema)
        registry.freeze()
        schema = registry.resolve("posts")
    """

    def __init__(self, schemas: list[CollectionSchema] | None = None):
        self._schemas: dict[str, CollectionSchema] = {}
        self._frozen = False
        for schema in schemas or []:
            self.register(schema)

    def register(self, schema: CollectionSchema) -> None:
        """Register a collection schema.

        Raises:
            DuplicateSlug: If the slug is already registered
            RegistryFrozen: If called after freeze()
        """
        if self._frozen:
            raise RegistryFrozen(
                f"Cannot register '{schema.slug}': registry is frozen"
            )
        if schema.slug in self._schemas:
            raise DuplicateSlug(schema.slug)
        self._schemas[schema.slug] = schema

    def resolve(self, slug: str) -> CollectionSchema:
        """Get a schema by slug.

        Raises:
            UnknownCollection: If no collection has this slug
        """
        schema = self._schemas.get(slug)
        if schema is None:
            raise UnknownCollection(slug)
        return schema

    def get(self, slug: str) -> CollectionSchema | None:
        return self._schemas.get(slug)

    def freeze(self) -> None:
        """End the initialization phase. Idempotent."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def slugs(self) -> list[str]:
        return list(self._schemas.keys())

    def __contains__(self, slug: object) -> bool:
        return slug in self._schemas

    def __iter__(self) -> Iterator[CollectionSchema]:
        return iter(list(self._schemas.values()))

    def __len__(self) -> int:
        return len(self._schemas)
