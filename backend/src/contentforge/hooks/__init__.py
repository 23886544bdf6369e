"""ContentForge document lifecycle hook system.

Provides extension points for logic that runs at specific points in a
document's create/update/delete lifecycle:
- beforeValidate: Before field validation (can modify payload, can abort)
- beforeChange: After validation, before persist (can modify, can abort)
- afterChange: After persist (side effects only; failures become warnings)
- beforeDelete: Before delete (can abort)
- afterDelete: After delete (side effects only)

Usage:
    from contentforge.hooks import hook, HookContext, HookResult

    @hook("computeTotal")
    async def compute_total(ctx: HookContext) -> HookResult:
        total = sum(row["price"] for row in ctx.data.get("lines", []))
        return HookResult(update={"total": total})
"""

from contentforge.hooks.builtin import register_builtin_hooks, slugify
from contentforge.hooks.registry import HookRegistry, hook
from contentforge.hooks.service import HookService
from contentforge.hooks.types import (
    FieldHookContext,
    HookBinding,
    HookContext,
    HookResult,
    HookStage,
    HookWarning,
    compute_changes,
)

__all__ = [
    "FieldHookContext",
    "HookBinding",
    "HookContext",
    "HookRegistry",
    "HookResult",
    "HookService",
    "HookStage",
    "HookWarning",
    "compute_changes",
    "hook",
    "register_builtin_hooks",
    "slugify",
]
