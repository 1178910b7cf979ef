"""Recorded state of applied resources."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .enums import ChangeAction
    from .identity import ResourceIdentity


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True, kw_only=True)
class StateRecord:
    """Last successfully applied state of one resource.

    ``attributes`` holds the resolved values sent to the provider, ``outputs`` the
    values the provider computed. ``deposed`` lists provider ids of objects that a
    create-before-delete replacement still has to remove.
    """

    identity: ResourceIdentity
    provider_id: str
    content_hash: str
    attributes: Mapping[str, object] = field(default_factory=dict["str", "object"])
    outputs: Mapping[str, object] = field(default_factory=dict["str", "object"])
    dependencies: tuple[ResourceIdentity, ...] = ()
    deposed: tuple[str, ...] = ()
    updated_at: datetime = field(default_factory=_utcnow)

    def value_for(self, attribute: str | None) -> object:
        """Resolve a reference target: the provider id, an output, or an input."""

        if attribute is None or attribute == "id":
            return self.outputs.get("id", self.provider_id)
        if attribute in self.outputs:
            return self.outputs[attribute]
        return self.attributes.get(attribute)


@dataclass(frozen=True, slots=True, kw_only=True)
class Intent:
    """Journal entry written before a provider call and cleared with its outcome.

    An intent that survives to the next run marks an operation whose result was
    never recorded.
    """

    identity: ResourceIdentity
    action: ChangeAction
    started_at: datetime = field(default_factory=_utcnow)
