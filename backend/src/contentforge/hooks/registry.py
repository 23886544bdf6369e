"""Hook registry for ContentForge.

Collection definitions written in YAML refer to hooks by name; the
registry maps those names to implementations. Follows the same pattern
as FieldValidatorRegistry and PredicateRegistry.
"""

from collections.abc import Callable
from typing import Any

from contentforge.core.types import Operation
from contentforge.hooks.types import HookBinding, HookFn


class HookRegistry:
    """Registry for hook implementations.

    Hooks must be explicitly registered before they can be referenced
    from collection definitions. Registration is typically done at
    application startup via register_builtin_hooks() or the @hook decorator.

    Example:
        @hook("notifyStaff")
        async def notify_staff(ctx: HookContext) -> None:
            ...
    """

    _hooks: dict[str, HookFn] = {}

    @classmethod
    def register(cls, name: str, hook_fn: HookFn) -> None:
        """Register a hook function by name.

        Idempotent - re-registering the same name is a no-op.

        Args:
            name: Unique identifier for the hook
            hook_fn: Async function implementing the hook
        """
        if name in cls._hooks:
            return
        cls._hooks[name] = hook_fn

    @classmethod
    def get(cls, name: str) -> HookFn:
        """Get a registered hook function by name.

        Raises:
            ValueError: If hook is not registered
        """
        if name not in cls._hooks:
            raise ValueError(
                f"Hook '{name}' is not registered. "
                "Hooks must be explicitly registered at application startup."
            )
        return cls._hooks[name]

    @classmethod
    def bind(
        cls,
        name: str,
        on: list[Operation] | None = None,
        params: dict[str, Any] | None = None,
        description: str = "",
    ) -> HookBinding:
        """Build a binding for a registered hook.

        Raises:
            ValueError: If hook is not registered
        """
        return HookBinding(
            name=name,
            fn=cls.get(name),
            on=on,
            params=params or {},
            description=description,
        )

    @classmethod
    def is_registered(cls, name: str) -> bool:
        return name in cls._hooks

    @classmethod
    def list_registered(cls) -> list[str]:
        return sorted(cls._hooks.keys())

    @classmethod
    def clear(cls) -> None:
        """Clear all registrations. Primarily for testing."""
        cls._hooks.clear()


def hook(name: str) -> Callable[[HookFn], HookFn]:
    """Decorator to register a hook function.

    Usage:
        @hook("notifyStaff")
        async def notify_staff(ctx: HookContext) -> None:
            ...
    """

    def decorator(fn: HookFn) -> HookFn:
        HookRegistry.register(name, fn)
        return fn

    return decorator
