"""Error taxonomy for the collection engine.

Every failure an operation can surface derives from EngineError and
carries a machine-readable code. Validation failures always carry the
complete list of field problems, never just the first one.
"""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class FieldError:
    """A single field-level validation problem.

    Attributes:
        message: Human-readable message
        code: Machine-readable code (e.g., "REQUIRED", "DANGLING_REFERENCE")
        field: Dotted path of the offending field ("author.name", "tags.1.tag")
    """

    message: str
    code: str
    field: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code, "field": self.field}


class EngineError(Exception):
    """Base class for all engine failures."""

    code = "ENGINE_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class UnknownCollection(EngineError):
    code = "UNKNOWN_COLLECTION"

    def __init__(self, slug: str):
        super().__init__(f"Collection '{slug}' is not registered")
        self.slug = slug


class DocumentNotFound(EngineError):
    code = "NOT_FOUND"

    def __init__(self, collection: str, document_id: str):
        super().__init__(f"Document '{document_id}' not found in '{collection}'")
        self.collection = collection
        self.document_id = document_id


class AccessDenied(EngineError):
    code = "ACCESS_DENIED"

    def __init__(self, collection: str, operation: str):
        super().__init__(f"Not allowed to {operation} documents in '{collection}'")
        self.collection = collection
        self.operation = operation


class ValidationError(EngineError):
    """One or many field-level problems, always reported together."""

    code = "VALIDATION_ERROR"

    def __init__(self, errors: list[FieldError], message: str | None = None):
        if message is None:
            fields = sorted({e.field for e in errors if e.field})
            message = (
                f"Validation failed for: {', '.join(fields)}"
                if fields else "Validation failed"
            )
        super().__init__(message)
        self.errors = list(errors)

    @property
    def fields(self) -> list[str]:
        return [e.field for e in self.errors if e.field]

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["errors"] = [e.to_dict() for e in self.errors]
        return result


class UniquenessViolation(ValidationError):
    code = "UNIQUENESS_VIOLATION"


class DanglingReference(ValidationError):
    code = "DANGLING_REFERENCE"


class HookAborted(EngineError):
    """A hook refused the operation; reason is caller-facing."""

    code = "HOOK_ABORTED"

    def __init__(self, reason: str, hook: str | None = None):
        super().__init__(reason)
        self.reason = reason
        self.hook = hook


class StorageError(EngineError):
    """Blob store put/delete failure."""

    code = "STORAGE_ERROR"


class PersistenceError(EngineError):
    """Backing-store failure. Transient; retrying is the caller's job."""

    code = "PERSISTENCE_ERROR"


class DuplicateKey(PersistenceError):
    """A persistence-level unique index rejected the write."""

    code = "DUPLICATE_KEY"

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = fields or []


class SchemaError(EngineError):
    """Invalid collection definitions or registry misuse."""

    code = "SCHEMA_ERROR"


class DuplicateSlug(SchemaError):
    code = "DUPLICATE_SLUG"

    def __init__(self, slug: str, source: str | None = None):
        where = f" ({source})" if source else ""
        super().__init__(f"Collection '{slug}' is already registered{where}")
        self.slug = slug


class DuplicateField(SchemaError):
    code = "DUPLICATE_FIELD"


class RegistryFrozen(SchemaError):
    code = "REGISTRY_FROZEN"
