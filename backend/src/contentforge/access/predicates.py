"""Reusable access predicates.

All predicates are total: they return a decision for any principal,
including anonymous ones (no id, no role), which never carry privileges.
"""

from typing import Any, Callable

from contentforge.access.decisions import (
    ALLOW,
    DENY,
    AccessDecision,
    Allow,
    Predicate,
    ScopedFilter,
)
from contentforge.core.types import Principal


# Role hierarchy - higher number = more permissions
ROLE_HIERARCHY = {
    "user": 1,
    "editor": 2,
    "admin": 3,
}


def _role_level(role: str | None) -> int:
    """Return numeric level for a role name, 0 if unknown/None."""
    return ROLE_HIERARCHY.get(role or "", 0)


def allow_all(principal: Principal) -> AccessDecision:
    return ALLOW


def deny_all(principal: Principal) -> AccessDecision:
    return DENY


def authenticated(principal: Principal) -> AccessDecision:
    return ALLOW if principal.is_authenticated else DENY


def has_role(*roles: str) -> Predicate:
    """Allow authenticated principals whose role is one of roles."""
    allowed = frozenset(roles)

    def predicate(principal: Principal) -> AccessDecision:
        if principal.is_authenticated and principal.role in allowed:
            return ALLOW
        return DENY

    predicate.__name__ = f"has_role({', '.join(sorted(allowed))})"
    return predicate


def role_at_least(role: str) -> Predicate:
    """Allow authenticated principals at or above role in ROLE_HIERARCHY."""
    if role not in ROLE_HIERARCHY:
        raise ValueError(f"Unknown role '{role}'")
    required = ROLE_HIERARCHY[role]

    def predicate(principal: Principal) -> AccessDecision:
        if principal.is_authenticated and _role_level(principal.role) >= required:
            return ALLOW
        return DENY

    predicate.__name__ = f"role_at_least({role})"
    return predicate


def owner_or_role(owner_field: str = "id", role: str = "admin") -> Predicate:
    """Allow role holders everything; scope everyone else to their own documents.

    With owner_field="id" this is the "users can only touch their own
    user document" rule.
    """
    bypass = role_at_least(role)

    def predicate(principal: Principal) -> AccessDecision:
        if not principal.is_authenticated:
            return DENY
        if isinstance(bypass(principal), Allow):
            return ALLOW
        return ScopedFilter({owner_field: {"eq": principal.id}})

    predicate.__name__ = f"owner_or_role({owner_field}, {role})"
    return predicate


# =============================================================================
# Predicate Registry
# =============================================================================


class PredicateRegistry:
    """Resolves declarative access specs (from YAML) to predicates.

    Supported specs:
        "public" | "authenticated" | "nobody"
        {"role": "admin"} or {"role": ["admin", "editor"]}
        {"minRole": "editor"}
        {"owner": "ownerId", "bypass": "admin"}
    """

    _named: dict[str, Predicate] = {
        "public": allow_all,
        "authenticated": authenticated,
        "nobody": deny_all,
    }

    @classmethod
    def register(cls, name: str, predicate: Predicate) -> None:
        """Register a named predicate. Re-registering a name is a no-op."""
        if name in cls._named:
            return
        cls._named[name] = predicate

    @classmethod
    def resolve(cls, spec: Any) -> Predicate:
        """Turn a declarative spec into a predicate.

        Raises:
            ValueError: If the spec is not recognised
        """
        if isinstance(spec, bool):
            return allow_all if spec else deny_all

        if isinstance(spec, str):
            if spec not in cls._named:
                raise ValueError(
                    f"Unknown access rule '{spec}'. "
                    f"Available: {', '.join(sorted(cls._named))}"
                )
            return cls._named[spec]

        if isinstance(spec, dict):
            if "role" in spec:
                roles = spec["role"]
                if isinstance(roles, str):
                    roles = [roles]
                return has_role(*roles)
            if "minRole" in spec:
                return role_at_least(spec["minRole"])
            if "owner" in spec:
                return owner_or_role(spec["owner"], spec.get("bypass", "admin"))

        raise ValueError(f"Unsupported access rule: {spec!r}")

    @classmethod
    def names(cls) -> list[str]:
        return sorted(cls._named.keys())


def predicate_name(predicate: Callable[..., Any]) -> str:
    return getattr(predicate, "__name__", repr(predicate))
