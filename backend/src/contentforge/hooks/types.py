"""Hook system types for ContentForge.

Defines the data structures for the document lifecycle hook pipeline:
- HookStage: the named points in a document operation
- HookBinding: a hook function attached to a collection or a field
- HookContext / FieldHookContext: runtime state passed to hook functions
- HookResult: return value from collection-level hooks
- HookWarning: a non-fatal after-stage failure reported to the caller
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

from contentforge.core.types import ANONYMOUS, Operation, Principal


class HookStage(Enum):
    """Lifecycle points, in execution order.

    beforeValidate -> validate -> beforeChange -> persist -> afterChange
    beforeDelete -> persist delete -> afterDelete
    """

    BEFORE_VALIDATE = "beforeValidate"
    BEFORE_CHANGE = "beforeChange"
    AFTER_CHANGE = "afterChange"
    BEFORE_DELETE = "beforeDelete"
    AFTER_DELETE = "afterDelete"

    @property
    def allows_field_hooks(self) -> bool:
        return self in (HookStage.BEFORE_VALIDATE, HookStage.BEFORE_CHANGE)


@dataclass
class HookContext:
    """Runtime context passed to every collection-level hook.

    Attributes:
        collection: Slug of the collection being operated on
        operation: The current operation (create, update, delete)
        data: Working document; before-stages see the in-flight payload,
            after-stages a deep copy of the committed document
        original: Stored document before the operation (update/delete only)
        principal: The requesting actor
        params: Binding parameters from the collection definition
        now: Timestamp of this operation, from the engine clock
        engine: Document engine handle, populated for after-stages only
    """

    collection: str
    operation: Operation
    data: dict[str, Any]
    original: dict[str, Any] | None = None
    principal: Principal = ANONYMOUS
    params: dict[str, Any] = field(default_factory=dict)
    now: datetime | None = None
    engine: Any = None  # DocumentEngine instance (avoids circular import)

    @property
    def changes(self) -> dict[str, Any] | None:
        return compute_changes(self.data, self.original)


@dataclass
class FieldHookContext:
    """Runtime context passed to field-scoped hooks.

    Field hooks receive the value of their own field and return the new
    value, or None to keep it unchanged.

    Attributes:
        field_name: Dotted path of the field within the document
        value: Current value of the field (None if absent)
        data: The mapping the field lives in (the document or its group)
    """

    collection: str
    operation: Operation
    field_name: str
    value: Any
    data: dict[str, Any]
    original: dict[str, Any] | None = None
    principal: Principal = ANONYMOUS
    params: dict[str, Any] = field(default_factory=dict)
    now: datetime | None = None


@dataclass
class HookResult:
    """Return value from collection-level hooks.

    Attributes:
        update: Fields to merge into the working document
        abort: User-facing reason to abort the operation (before-stages only)
    """

    update: dict[str, Any] | None = None
    abort: str | None = None


HookFn = Callable[[Any], Awaitable[Any]]


@dataclass
class HookBinding:
    """A hook function bound to a collection or field.

    Attributes:
        name: Registered hook name, or the function name for code-built schemas
        fn: Async hook implementation
        on: Operations this binding applies to; None means every operation
            reaching the stage
        params: Per-binding configuration passed through the context
        description: Human-readable description
    """

    name: str
    fn: HookFn
    on: list[Operation] | None = None
    params: dict[str, Any] = field(default_factory=dict)
    description: str = ""

    def applies_to(self, operation: Operation) -> bool:
        return self.on is None or operation in self.on


@dataclass
class HookWarning:
    """A failure in an after-stage hook or cross-collection write.

    The primary write already committed; warnings are surfaced to the
    caller instead of failing the operation.
    """

    hook: str
    stage: HookStage
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"hook": self.hook, "stage": self.stage.value, "message": self.message}


def compute_changes(
    record: dict[str, Any], original: dict[str, Any] | None
) -> dict[str, Any] | None:
    """Compute a diff of changed fields between record and original.

    Returns None if original is None (create operations).
    Returns a dict of {field: new_value} for fields that differ.
    """
    if original is None:
        return None

    return {
        key: value
        for key, value in record.items()
        if key not in original or original[key] != value
    }
