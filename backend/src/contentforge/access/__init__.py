"""Capability-based access control for collections.

Each collection maps operations to predicates, pure functions of the
requesting principal that return Allow, Deny or ScopedFilter.

Usage:
    from contentforge.access import owner_or_role, allow_all

    access = {
        Operation.READ: allow_all,
        Operation.UPDATE: owner_or_role("id", "admin"),
    }
"""

from contentforge.access.decisions import (
    ALLOW,
    DENY,
    AccessDecision,
    Allow,
    Deny,
    Predicate,
    ScopedFilter,
)
from contentforge.access.evaluator import apply_scope, evaluate
from contentforge.access.predicates import (
    ROLE_HIERARCHY,
    PredicateRegistry,
    allow_all,
    authenticated,
    deny_all,
    has_role,
    owner_or_role,
    role_at_least,
)

__all__ = [
    "ALLOW",
    "DENY",
    "AccessDecision",
    "Allow",
    "Deny",
    "Predicate",
    "PredicateRegistry",
    "ROLE_HIERARCHY",
    "ScopedFilter",
    "allow_all",
    "apply_scope",
    "authenticated",
    "deny_all",
    "evaluate",
    "has_role",
    "owner_or_role",
    "role_at_least",
]
