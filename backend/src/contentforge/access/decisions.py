"""Access decisions returned by collection predicates."""

from dataclasses import dataclass, field
from typing import Any, Callable, Union

from contentforge.core.types import Principal


@dataclass(frozen=True)
class Allow:
    """Unconditional permission."""


@dataclass(frozen=True)
class Deny:
    """Unconditional refusal."""

    reason: str = ""


@dataclass(frozen=True)
class ScopedFilter:
    """Permission limited to documents matching criteria.

    criteria uses the persistence where format, e.g.
    {"ownerId": {"eq": "U001"}}. It is applied by the persistence layer,
    never as an in-memory post-filter.
    """

    criteria: dict[str, Any] = field(default_factory=dict)


AccessDecision = Union[Allow, Deny, ScopedFilter]

ALLOW = Allow()
DENY = Deny()

# Predicate signature: pure function of the principal, no I/O
Predicate = Callable[[Principal], AccessDecision]
