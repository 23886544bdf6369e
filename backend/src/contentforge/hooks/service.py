"""Hook execution service for ContentForge.

Orchestrates the execution of hooks at each lifecycle stage, handling
operation filtering, sequential ordering, result merging, and the
different failure policies of before- and after-stages.
"""

import logging
from typing import Any

from contentforge.core.errors import HookAborted
from contentforge.core.types import ANONYMOUS, Operation, Principal
from contentforge.hooks.types import (
    FieldHookContext,
    HookBinding,
    HookContext,
    HookResult,
    HookStage,
    HookWarning,
)
from contentforge.schema.fields import FieldDescriptor, FieldKind

logger = logging.getLogger(__name__)


class HookService:
    """Runs hook bindings for document lifecycle stages.

    Hooks within a stage execute sequentially in declared order. Each
    hook's update output is merged into the working document before the
    next hook runs.
    """

    async def run_hooks(
        self,
        stage: HookStage,
        bindings: list[HookBinding],
        context: HookContext,
    ) -> HookResult | None:
        """Execute collection-level hooks for a before-stage.

        Args:
            stage: The lifecycle stage (beforeValidate, beforeChange, beforeDelete)
            bindings: Hook bindings from the collection (in declared order)
            context: The hook context with the working document

        Returns:
            Merged HookResult with all updates applied, or None if nothing changed.

        Raises:
            HookAborted: If any hook aborts or raises
        """
        merged_updates: dict[str, Any] = {}

        for binding in bindings:
            if not binding.applies_to(context.operation):
                continue

            context.params = binding.params
            try:
                result = await binding.fn(context)
            except HookAborted as e:
                if e.hook is None:
                    e.hook = binding.name
                raise
            except Exception as e:
                logger.warning(
                    "%s hook '%s' failed on '%s': %s",
                    stage.value, binding.name, context.collection, e,
                )
                raise HookAborted(
                    f"Hook '{binding.name}' failed: {e}", hook=binding.name
                ) from e

            if result is None:
                continue

            if result.abort:
                raise HookAborted(result.abort, hook=binding.name)

            # Merge updates into the working document (compounding)
            if result.update:
                context.data.update(result.update)
                merged_updates.update(result.update)

        if merged_updates:
            return HookResult(update=merged_updates)
        return None

    async def run_after_hooks(
        self,
        stage: HookStage,
        bindings: list[HookBinding],
        context: HookContext,
    ) -> list[HookWarning]:
        """Execute hooks for an after-stage.

        The write already committed, so failures are logged and returned
        as warnings rather than raised. Returned updates and aborts are
        ignored.
        """
        warnings: list[HookWarning] = []

        for binding in bindings:
            if not binding.applies_to(context.operation):
                continue

            context.params = binding.params
            try:
                await binding.fn(context)
            except Exception as e:
                logger.error(
                    "%s hook '%s' failed on '%s': %s",
                    stage.value, binding.name, context.collection, e,
                )
                warnings.append(HookWarning(
                    hook=binding.name, stage=stage, message=str(e)
                ))

        return warnings

    async def run_field_hooks(
        self,
        stage: HookStage,
        fields: list[FieldDescriptor],
        data: dict[str, Any],
        *,
        collection: str,
        operation: Operation,
        original: dict[str, Any] | None = None,
        principal: Principal = ANONYMOUS,
        now: Any = None,
        prefix: str = "",
    ) -> None:
        """Execute field-scoped hooks in field declaration order.

        Group fields are descended into so nested field hooks run too. A
        hook returning None leaves the field value unchanged.

        Raises:
            HookAborted: If any field hook aborts or raises
        """
        for descriptor in fields:
            path = f"{prefix}{descriptor.name}"

            for binding in descriptor.hooks_for(stage):
                if not binding.applies_to(operation):
                    continue

                ctx = FieldHookContext(
                    collection=collection,
                    operation=operation,
                    field_name=path,
                    value=data.get(descriptor.name),
                    data=data,
                    original=original,
                    principal=principal,
                    params=binding.params,
                    now=now,
                )
                try:
                    value = await binding.fn(ctx)
                except HookAborted as e:
                    if e.hook is None:
                        e.hook = binding.name
                    raise
                except Exception as e:
                    logger.warning(
                        "%s hook '%s' failed on field '%s': %s",
                        stage.value, binding.name, path, e,
                    )
                    raise HookAborted(
                        f"Hook '{binding.name}' failed: {e}", hook=binding.name
                    ) from e

                if value is not None:
                    data[descriptor.name] = value

            if descriptor.kind == FieldKind.GROUP:
                group = data.get(descriptor.name)
                if isinstance(group, dict):
                    await self.run_field_hooks(
                        stage,
                        descriptor.fields,
                        group,
                        collection=collection,
                        operation=operation,
                        original=original,
                        principal=principal,
                        now=now,
                        prefix=f"{path}.",
                    )
