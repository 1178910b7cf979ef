"""Resource model: identities, declarations, schemas and recorded state."""

from __future__ import annotations

from .declaration import ResourceDeclaration
from .enums import AttributeKind, ChangeAction, ReplacementOrder
from .identity import ResourceIdentity
from .schema import (
    AttributeSpec,
    ResourceCatalog,
    ResourceType,
    UnknownResourceTypeError,
)
from .state import Intent, StateRecord
from .values import (
    UNKNOWN,
    AttributeValue,
    Reference,
    Unknown,
    contains_unknown,
    iter_references,
    plain,
    resolve_value,
    values_equal,
)

__all__ = [
    "UNKNOWN",
    "AttributeKind",
    "AttributeSpec",
    "AttributeValue",
    "ChangeAction",
    "Intent",
    "Reference",
    "ReplacementOrder",
    "ResourceCatalog",
    "ResourceDeclaration",
    "ResourceIdentity",
    "ResourceType",
    "StateRecord",
    "Unknown",
    "UnknownResourceTypeError",
    "contains_unknown",
    "iter_references",
    "plain",
    "resolve_value",
    "values_equal",
]
