"""Desired-state resource declarations."""

from __future__ import annotations

import copy
import hashlib
import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from .values import iter_references, plain

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .identity import ResourceIdentity
    from .values import AttributeValue, Reference


@dataclass(frozen=True, slots=True, kw_only=True)
class ResourceDeclaration:
    """One desired resource keyed by logical identity.

    Attributes are copied on construction and exposed read-only; a declaration is
    immutable for the duration of a run.
    """

    identity: ResourceIdentity
    attributes: Mapping[str, AttributeValue] = field(default_factory=dict["str", "AttributeValue"])
    depends_on: tuple[ResourceIdentity, ...] = ()

    def __post_init__(self) -> None:
        frozen = MappingProxyType(copy.deepcopy(dict(self.attributes)))
        object.__setattr__(self, "attributes", frozen)
        object.__setattr__(self, "depends_on", tuple(dict.fromkeys(self.depends_on)))

    @property
    def type(self) -> str:
        return self.identity.type

    def references(self) -> tuple[Reference, ...]:
        return tuple(iter_references(self.attributes))

    def dependencies(self) -> tuple[ResourceIdentity, ...]:
        """Explicit dependencies first, then reference targets, without duplicates."""

        ordered = dict.fromkeys(self.depends_on)
        for reference in self.references():
            ordered.setdefault(reference.target)
        return tuple(ordered)

    def content_hash(self) -> str:
        payload = {
            "type": self.identity.type,
            "attributes": plain(self.attributes),
            "depends_on": sorted(str(identity) for identity in self.depends_on),
        }
        encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
