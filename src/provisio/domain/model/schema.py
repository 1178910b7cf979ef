"""Resource type schemas and the catalog that holds them."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .enums import AttributeKind, ReplacementOrder
from .values import Reference

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator


@dataclass(frozen=True, slots=True, kw_only=True)
class AttributeSpec:
    kind: AttributeKind = AttributeKind.ANY
    required: bool = False
    immutable: bool = False
    # canonical form applied to literal values when declarations load
    normalize: Callable[[Any], object] | None = None

    def accepts(self, value: object) -> bool:
        """Return whether ``value`` fits this attribute (references always fit)."""

        if value is None or isinstance(value, Reference):
            return True
        match self.kind:
            case AttributeKind.STRING:
                return isinstance(value, str)
            case AttributeKind.INTEGER:
                return isinstance(value, int) and not isinstance(value, bool)
            case AttributeKind.NUMBER:
                return isinstance(value, int | float) and not isinstance(value, bool)
            case AttributeKind.BOOLEAN:
                return isinstance(value, bool)
            case AttributeKind.LIST:
                return isinstance(value, list | tuple)
            case AttributeKind.MAP:
                return isinstance(value, Mapping)
            case AttributeKind.ANY:
                return True


@dataclass(frozen=True, slots=True, kw_only=True)
class ResourceType:
    """Schema of one resource type.

    ``outputs`` names attributes the provider computes on create/update; they can be
    referenced as ``${type.name.<output>}``. Inputs are echoed into state and can be
    referenced as well.
    """

    name: str
    attributes: Mapping[str, AttributeSpec] = field(
        default_factory=dict["str", "AttributeSpec"]
    )
    outputs: frozenset[str] = frozenset({"id"})
    replacement: ReplacementOrder = ReplacementOrder.DELETE_BEFORE_CREATE
    open_schema: bool = False

    @property
    def immutable_attributes(self) -> frozenset[str]:
        return frozenset(name for name, spec in self.attributes.items() if spec.immutable)

    @property
    def required_attributes(self) -> frozenset[str]:
        return frozenset(name for name, spec in self.attributes.items() if spec.required)

    def referenceable(self, attribute: str) -> bool:
        return attribute in self.outputs or attribute in self.attributes or self.open_schema


class UnknownResourceTypeError(KeyError):
    """Raised when a catalog lookup misses."""


class ResourceCatalog:
    """Registry of resource types available to a deployment."""

    def __init__(self, types: Iterable[ResourceType] = ()) -> None:
        self._types: dict[str, ResourceType] = {}
        for resource_type in types:
            self.register(resource_type)

    def register(self, resource_type: ResourceType) -> None:
        if resource_type.name in self._types:
            raise ValueError(f"Resource type already registered: {resource_type.name}")
        self._types[resource_type.name] = resource_type

    def get(self, name: str) -> ResourceType:
        try:
            return self._types[name]
        except KeyError:
            raise UnknownResourceTypeError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def __iter__(self) -> Iterator[ResourceType]:
        return iter(self._types.values())

    def __len__(self) -> int:
        return len(self._types)
