"""Collection schema model and registry.

The YAML loader lives in contentforge.schema.loader and the definition
file checker in contentforge.schema.validator.
"""

from contentforge.schema.fields import (
    STRING_KINDS,
    CollectionSchema,
    FieldDescriptor,
    FieldKind,
    SelectOption,
    SizeProfile,
    UploadConfig,
)
from contentforge.schema.registry import CollectionRegistry

__all__ = [
    "STRING_KINDS",
    "CollectionRegistry",
    "CollectionSchema",
    "FieldDescriptor",
    "FieldKind",
    "SelectOption",
    "SizeProfile",
    "UploadConfig",
]
