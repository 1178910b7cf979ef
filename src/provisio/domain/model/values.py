"""Attribute values, references between declarations, and value helpers."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from .identity import ResourceIdentity

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

_REFERENCE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^\$\{\s*([A-Za-z_][A-Za-z0-9_-]*)\.([A-Za-z_][A-Za-z0-9_-]*)"
    r"(?:\.([A-Za-z_][A-Za-z0-9_-]*))?\s*\}$"
)


@dataclass(frozen=True, slots=True)
class Reference:
    """Pointer from an attribute to another declaration.

    Without ``attribute`` the reference resolves to the provider-assigned id of
    ``target``; otherwise to one of its output (or echoed input) attributes.
    """

    target: ResourceIdentity
    attribute: str | None = None

    def __str__(self) -> str:
        if self.attribute is None:
            return f"${{{self.target}}}"
        return f"${{{self.target}.{self.attribute}}}"

    @classmethod
    def parse(cls, value: str) -> Reference | None:
        """Return the reference encoded in ``value`` or ``None`` for plain strings."""

        match = _REFERENCE_PATTERN.match(value.strip())
        if match is None:
            return None
        resource_type, name, attribute = match.groups()
        return cls(target=ResourceIdentity(resource_type, name), attribute=attribute)


class Unknown:
    """Value that is only known once a pending operation has been applied."""

    __slots__ = ()
    _instance: Unknown | None = None

    def __new__(cls) -> Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "(known after apply)"


UNKNOWN: Final = Unknown()


type AttributeValue = (
    str
    | int
    | float
    | bool
    | None
    | Reference
    | list[AttributeValue]
    | dict[str, AttributeValue]
)


def iter_references(value: object) -> Iterator[Reference]:
    """Yield every reference nested in ``value`` in document order."""

    if isinstance(value, Reference):
        yield value
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, list | tuple):
        for item in value:
            yield from iter_references(item)


def resolve_value(value: object, lookup: Callable[[Reference], object]) -> object:
    """Replace references in ``value`` with ``lookup(reference)``."""

    if isinstance(value, Reference):
        return lookup(value)
    if isinstance(value, Mapping):
        return {key: resolve_value(item, lookup) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [resolve_value(item, lookup) for item in value]
    return value


def contains_unknown(value: object) -> bool:
    if isinstance(value, Unknown):
        return True
    if isinstance(value, Mapping):
        return any(contains_unknown(item) for item in value.values())
    if isinstance(value, list | tuple):
        return any(contains_unknown(item) for item in value)
    return False


def plain(value: object) -> object:
    """Return a JSON-shaped copy: tuples become lists, mappings become dicts."""

    if isinstance(value, Reference):
        return {"$ref": str(value)}
    if isinstance(value, Mapping):
        return {str(key): plain(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [plain(item) for item in value]
    return value


def values_equal(left: object, right: object) -> bool:
    if contains_unknown(left) or contains_unknown(right):
        return False
    return plain(left) == plain(right)
