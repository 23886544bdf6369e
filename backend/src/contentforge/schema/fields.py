"""Declarative collection and field descriptors.

A CollectionSchema is built once at startup (from code or YAML) and is
never mutated afterwards. Relation and upload targets are stored as
slugs and resolved lazily at validation time, so collections may refer
to each other regardless of registration order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from contentforge.core.errors import DuplicateField, SchemaError
from contentforge.core.types import Operation

if TYPE_CHECKING:
    from contentforge.access.decisions import Predicate
    from contentforge.hooks.types import HookBinding, HookStage


# Field validator signature: value -> None | True (valid) or str (error reason)
FieldValidatorFn = Callable[[Any], "bool | str | None"]


class FieldKind(Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    RICHTEXT = "richtext"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    SELECT = "select"
    GROUP = "group"
    ARRAY = "array"
    RELATION = "relation"
    UPLOAD = "upload"

    @property
    def is_reference(self) -> bool:
        return self in (FieldKind.RELATION, FieldKind.UPLOAD)

    @property
    def is_nested(self) -> bool:
        return self in (FieldKind.GROUP, FieldKind.ARRAY)


# Kinds whose values are strings and support length/pattern rules
STRING_KINDS = frozenset({FieldKind.TEXT, FieldKind.TEXTAREA, FieldKind.EMAIL})


@dataclass(frozen=True)
class SelectOption:
    value: str
    label: str = ""


@dataclass
class FieldDescriptor:
    """One typed, named value slot within a collection.

    Attributes:
        name: Field name, unique within its collection (or parent group)
        kind: Value type
        required: Empty values are rejected
        default: Static value or zero-arg producer applied on create
        validators: Extra pure validators run after kind coercion
        hooks: Field-scoped hooks keyed by stage (beforeValidate, beforeChange)
        options: Allowed values for select fields
        fields: Child descriptors for group/array fields
        relation_to: Target collection slug for relation/upload fields
        unique: Value must be unique within the collection
    """

    name: str
    kind: FieldKind
    required: bool = False
    default: Any = None
    validators: list[FieldValidatorFn] = field(default_factory=list)
    hooks: dict["HookStage", list["HookBinding"]] = field(default_factory=dict)
    options: list[SelectOption] = field(default_factory=list)
    fields: list["FieldDescriptor"] = field(default_factory=list)
    relation_to: str | None = None
    min: float | None = None
    max: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    min_rows: int | None = None
    max_rows: int | None = None
    unique: bool = False
    label: str | None = None

    def __post_init__(self) -> None:
        if self.kind.is_reference and not self.relation_to:
            raise SchemaError(
                f"Field '{self.name}' of kind '{self.kind.value}' needs relation_to"
            )
        if self.kind == FieldKind.SELECT and not self.options:
            raise SchemaError(f"Select field '{self.name}' declares no options")
        if self.kind.is_nested:
            _check_unique_names(self.fields, f"field '{self.name}'")

    @property
    def display_name(self) -> str:
        if self.label:
            return self.label
        return _to_display_name(self.name)

    @property
    def option_values(self) -> set[str]:
        return {o.value for o in self.options}

    def default_value(self) -> Any:
        """Return the declared default, calling it if it is a producer."""
        if callable(self.default):
            return self.default()
        return self.default

    def hooks_for(self, stage: "HookStage") -> list["HookBinding"]:
        return self.hooks.get(stage, [])


@dataclass(frozen=True)
class SizeProfile:
    """A named derived-size variant for image uploads."""

    name: str
    width: int | None = None
    height: int | None = None
    position: str = "centre"


@dataclass
class UploadConfig:
    """Marks a collection as binary-capable.

    Attributes:
        size_profiles: Variants produced at upload time
        mime_types: Accepted MIME patterns ("image/*")
        max_file_size: Upper bound in bytes, None for unlimited
    """

    size_profiles: list[SizeProfile] = field(default_factory=list)
    mime_types: list[str] = field(default_factory=list)
    max_file_size: int | None = None


@dataclass
class CollectionSchema:
    """Static descriptor of one collection.

    Attributes:
        slug: Unique collection identifier
        fields: Ordered field descriptors
        access: Operation -> predicate; missing operations are denied
        hooks: Stage -> ordered hook bindings
        timestamped: createdAt/updatedAt are managed by the engine
        unique_fields: Field names that must be unique in the collection
        upload: Present when documents of this collection own a binary asset
    """

    slug: str
    fields: list[FieldDescriptor]
    access: dict[Operation, "Predicate"] = field(default_factory=dict)
    hooks: dict["HookStage", list["HookBinding"]] = field(default_factory=dict)
    timestamped: bool = True
    unique_fields: set[str] = field(default_factory=set)
    upload: UploadConfig | None = None
    labels: dict[str, str] = field(default_factory=dict)
    use_as_title: str | None = None

    def __post_init__(self) -> None:
        if not self.slug:
            raise SchemaError("Collection slug must not be empty")
        _check_unique_names(self.fields, f"collection '{self.slug}'")
        self.unique_fields = set(self.unique_fields) | {
            f.name for f in self.fields if f.unique
        }
        names = {f.name for f in self.fields}
        unknown = self.unique_fields - names
        if unknown:
            raise SchemaError(
                f"Collection '{self.slug}' declares unknown unique fields: "
                f"{', '.join(sorted(unknown))}"
            )

    @property
    def is_upload_collection(self) -> bool:
        return self.upload is not None

    @property
    def singular_label(self) -> str:
        return self.labels.get("singular", _to_display_name(self.slug))

    def get_field(self, name: str) -> FieldDescriptor | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def hooks_for(self, stage: "HookStage") -> list["HookBinding"]:
        return self.hooks.get(stage, [])

    def upload_fields(self) -> list[FieldDescriptor]:
        return [f for f in self.fields if f.kind == FieldKind.UPLOAD]


def _check_unique_names(fields: list[FieldDescriptor], owner: str) -> None:
    seen: set[str] = set()
    for f in fields:
        if f.name in seen:
            raise DuplicateField(f"Duplicate field '{f.name}' in {owner}")
        seen.add(f.name)


def _to_display_name(name: str) -> str:
    """Convert camelCase or kebab-case to Title Case."""
    result = []
    for i, char in enumerate(name):
        if char in "-_":
            result.append(" ")
            continue
        if char.isupper() and i > 0:
            result.append(" ")
        result.append(char)
    return "".join(result).title()
