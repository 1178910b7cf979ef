"""Port for durable reconciliation state."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

    from provisio.domain.model import ChangeAction, Intent, ResourceIdentity, StateRecord


@runtime_checkable
class StateStore(Protocol):
    """Exclusive owner of state records for one deployment.

    Every mutating call is its own transaction. ``write`` and ``delete`` also clear
    the intent journal entry of the identity they touch.
    """

    @property
    def deployment(self) -> str: ...

    def read(self, identity: ResourceIdentity) -> StateRecord | None: ...

    def records(self) -> tuple[StateRecord, ...]: ...

    def write(self, record: StateRecord) -> None: ...

    def delete(self, identity: ResourceIdentity) -> None: ...

    def lock(self, owner: str) -> AbstractContextManager[None]: ...

    def force_unlock(self) -> bool: ...

    def begin_intent(self, identity: ResourceIdentity, action: ChangeAction) -> None: ...

    def end_intent(self, identity: ResourceIdentity) -> None: ...

    def pending_intents(self) -> tuple[Intent, ...]: ...
