"""Field type library: per-kind validation, coercion and named validators.

Usage:
    from contentforge.validation import DocumentValidator, ValidationContext

    validator = DocumentValidator(ValidationContext(...))
    coerced, errors = await validator.validate(schema.fields, payload)
"""

from contentforge.validation.fields import DocumentValidator, is_empty, parse_timestamp
from contentforge.validation.registry import (
    FieldValidatorRegistry,
    register_builtin_validators,
    validate_email,
    validate_phone,
    validate_slug,
    validate_url,
)
from contentforge.validation.types import ReferenceLookup, ValidationContext

__all__ = [
    "DocumentValidator",
    "FieldValidatorRegistry",
    "ReferenceLookup",
    "ValidationContext",
    "is_empty",
    "parse_timestamp",
    "register_builtin_validators",
    "validate_email",
    "validate_phone",
    "validate_slug",
    "validate_url",
]
