"""Named field validator registry.

Collection definitions written in YAML reference validators by name
(validators: [phone]); the loader resolves those names here. Code-built
schemas can pass plain callables instead.
"""

import re
from typing import Any, Callable

FieldValidatorFn = Callable[[Any], "bool | str | None"]


# Email: Basic RFC 5322 compliant pattern
EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"
)

# Phone: optional +, no leading zero, up to 16 digits once separators are removed
PHONE_PATTERN = re.compile(r"^[\+]?[1-9][\d]{0,15}$")
PHONE_SEPARATORS = re.compile(r"[\s\-\(\)]")

URL_PATTERN = re.compile(
    r"^https?://[^\s/$.?#].[^\s]*$",
    re.IGNORECASE
)

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def validate_phone(value: Any) -> str | None:
    if not isinstance(value, str) or not value:
        return "Phone number is required"
    if not PHONE_PATTERN.match(PHONE_SEPARATORS.sub("", value)):
        return "Please enter a valid phone number"
    return None


def validate_email(value: Any) -> str | None:
    if isinstance(value, str) and EMAIL_PATTERN.match(value):
        return None
    return "Please enter a valid email address"


def validate_url(value: Any) -> str | None:
    if isinstance(value, str) and URL_PATTERN.match(value):
        return None
    return "Please enter a valid URL"


def validate_slug(value: Any) -> str | None:
    if isinstance(value, str) and SLUG_PATTERN.match(value):
        return None
    return "Only lowercase letters, digits and single hyphens are allowed"


class FieldValidatorRegistry:
    """Registry for named field validators.

    Example:
        FieldValidatorRegistry.register("postcode", validate_postcode)
        fn = FieldValidatorRegistry.get("postcode")
    """

    _validators: dict[str, FieldValidatorFn] = {}

    @classmethod
    def register(cls, name: str, fn: FieldValidatorFn) -> None:
        """Register a validator by name.

        Idempotent - re-registering the same name is a no-op.
        """
        if name in cls._validators:
            return
        cls._validators[name] = fn

    @classmethod
    def get(cls, name: str) -> FieldValidatorFn:
        """Get a registered validator by name.

        Raises:
            ValueError: If the validator is not registered
        """
        if name not in cls._validators:
            raise ValueError(
                f"Field validator '{name}' is not registered. "
                "Available: " + ", ".join(cls.list_registered())
            )
        return cls._validators[name]

    @classmethod
    def is_registered(cls, name: str) -> bool:
        return name in cls._validators

    @classmethod
    def list_registered(cls) -> list[str]:
        return sorted(cls._validators.keys())

    @classmethod
    def clear(cls) -> None:
        """Clear all registrations. Primarily for testing."""
        cls._validators.clear()


def register_builtin_validators() -> None:
    """Register the validators shipped with the engine."""
    FieldValidatorRegistry.register("phone", validate_phone)
    FieldValidatorRegistry.register("email", validate_email)
    FieldValidatorRegistry.register("url", validate_url)
    FieldValidatorRegistry.register("slug", validate_slug)
