"""Access predicate evaluation for collection operations."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from contentforge.access.decisions import (
    ALLOW,
    DENY,
    AccessDecision,
    Allow,
    Deny,
    ScopedFilter,
)
from contentforge.access.predicates import predicate_name
from contentforge.core.types import Operation, Principal

if TYPE_CHECKING:
    from contentforge.schema.fields import CollectionSchema

logger = logging.getLogger(__name__)


def evaluate(
    schema: "CollectionSchema",
    operation: Operation,
    principal: Principal,
) -> AccessDecision:
    """Decide whether principal may perform operation on the collection.

    Fail-closed rules:
    - No predicate for the operation -> Deny
    - ScopedFilter on create -> Deny (there is no document to filter)
    - A predicate that raises or returns a non-decision -> Deny

    Args:
        schema: The collection schema holding the access predicates
        operation: The operation being attempted
        principal: The requesting principal (possibly anonymous)

    Returns:
        Allow, Deny, or ScopedFilter
    """
    predicate = schema.access.get(operation)
    if predicate is None:
        logger.debug(
            "No %s predicate on '%s', denying", operation.value, schema.slug
        )
        return DENY

    try:
        decision = predicate(principal)
    except Exception:
        logger.exception(
            "Access predicate %s for %s on '%s' raised, denying",
            predicate_name(predicate),
            operation.value,
            schema.slug,
        )
        return DENY

    decision = _normalize(decision)
    if decision is None:
        logger.error(
            "Access predicate %s for %s on '%s' returned an unsupported value, denying",
            predicate_name(predicate),
            operation.value,
            schema.slug,
        )
        return DENY

    if isinstance(decision, ScopedFilter) and operation == Operation.CREATE:
        decision = DENY

    logger.debug(
        "Access %s on '%s' for principal %s (%s): %s",
        operation.value,
        schema.slug,
        principal.id or "<anonymous>",
        principal.role or "-",
        type(decision).__name__,
    )
    return decision


def _normalize(decision: Any) -> AccessDecision | None:
    if isinstance(decision, (Allow, Deny, ScopedFilter)):
        return decision
    if isinstance(decision, bool):
        return ALLOW if decision else DENY
    return None


def apply_scope(
    where: dict[str, Any] | None,
    decision: AccessDecision,
) -> dict[str, Any] | None:
    """Combine a caller filter with the decision's scope criteria."""
    if not isinstance(decision, ScopedFilter) or not decision.criteria:
        return where
    if not where:
        return dict(decision.criteria)
    return {"and": [where, dict(decision.criteria)]}
