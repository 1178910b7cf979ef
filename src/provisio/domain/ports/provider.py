"""Port for the cloud resource provider."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True, slots=True)
class ProviderResult:
    """Outcome of a successful create."""

    provider_id: str
    outputs: Mapping[str, object] = field(default_factory=dict["str", "object"])


@runtime_checkable
class ResourceProvider(Protocol):
    """Opaque, possibly slow and rate-limited boundary to the cloud.

    Implementations raise ``ProviderError`` (``transient=True`` for retryable
    failures) and ``ResourceNotFoundError`` when an object does not exist.

    ``create`` should be idempotent for the same attributes, e.g. by deriving the
    provider id from them. A run interrupted between a create and its state write
    leaves only an intent behind, and the next run creates the resource again: a
    provider that assigns a fresh id per call leaks the first object.

    One handle serves a whole run, possibly from several executor threads;
    ``close`` releases whatever it holds once the run is over.
    """

    def create(self, resource_type: str, attributes: Mapping[str, object]) -> ProviderResult: ...

    def update(
        self,
        resource_type: str,
        provider_id: str,
        changes: Mapping[str, object],
    ) -> Mapping[str, object]: ...

    def delete(self, resource_type: str, provider_id: str) -> None: ...

    def read(self, resource_type: str, provider_id: str) -> Mapping[str, object]: ...

    def close(self) -> None: ...
