"""Error taxonomy for reconciliation runs.

Pre-run errors (``SchemaError``, ``CycleError``) abort before any provider call.
``StoreError`` aborts the run; the run lock is still released. ``ProviderError`` is
isolated to the plan entry that raised it. ``OrderError`` signals an internal
inconsistency between the graph and the plan and is never expected in normal runs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from provisio.domain.model import ResourceIdentity


class ProvisioError(Exception):
    """Base class for all reconciliation errors."""


class SchemaError(ProvisioError):
    """Raised when declarations are malformed."""

    def __init__(self, message: str, *, problems: Sequence[str] = ()) -> None:
        self.problems = tuple(problems)
        if self.problems:
            details = "\n".join(f"  - {problem}" for problem in self.problems)
            message = f"{message}:\n{details}"
        super().__init__(message)


class CycleError(ProvisioError):
    """Raised when declarations form a dependency cycle."""

    def __init__(self, cycle: Sequence[ResourceIdentity]) -> None:
        self.cycle = tuple(cycle)
        path = " -> ".join(str(identity) for identity in self.cycle)
        super().__init__(f"Dependency cycle detected: {path}")


class StoreError(ProvisioError):
    """Raised when the state store cannot be read or written."""


class StateLockError(StoreError):
    """Raised when another run already holds the deployment lock."""

    def __init__(self, deployment: str, *, holder: str | None = None) -> None:
        self.deployment = deployment
        self.holder = holder
        held_by = f" (held by {holder})" if holder else ""
        super().__init__(f"State for deployment {deployment!r} is locked{held_by}")


class ProviderError(ProvisioError):
    """Raised by resource providers.

    ``transient`` marks failures worth retrying (rate limiting, timeouts, 5xx).
    """

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class ResourceNotFoundError(ProviderError):
    """Raised when the provider has no object for a provider id."""

    def __init__(self, provider_id: str) -> None:
        super().__init__(f"Resource not found: {provider_id}", transient=False)
        self.provider_id = provider_id


class OrderError(ProvisioError):
    """Raised when a plan and its dependency graph disagree."""
