"""Changeset types shared by the differ, planner and executor.

The changeset is the contract between:
- the differ (desired declarations vs recorded and live state)
- the planner (ordering)
- the executor (provider calls and state writes)
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from provisio.domain.model import ChangeAction

if TYPE_CHECKING:
    from collections.abc import Iterator

    from provisio.domain.model import (
        Intent,
        ReplacementOrder,
        ResourceDeclaration,
        ResourceIdentity,
        StateRecord,
    )


@dataclass(frozen=True, slots=True, kw_only=True)
class AttributeDiff:
    name: str
    old: object
    new: object
    immutable: bool = False


@dataclass(frozen=True, slots=True, kw_only=True)
class ChangeSetEntry:
    """One planned operation on one resource.

    ``replacement`` is set on REPLACE entries and on the DELETE/CREATE halves the
    planner splits them into. ``deposed_id`` marks a DELETE that removes an old
    object of a create-before-delete replacement rather than the current one.
    """

    action: ChangeAction
    identity: ResourceIdentity
    declaration: ResourceDeclaration | None = None
    record: StateRecord | None = None
    diffs: tuple[AttributeDiff, ...] = ()
    replacement: ReplacementOrder | None = None
    deposed_id: str | None = None
    drift: bool = False
    reason: str | None = None

    @property
    def provider_id(self) -> str | None:
        if self.deposed_id is not None:
            return self.deposed_id
        return self.record.provider_id if self.record is not None else None

    def describe(self) -> str:
        label = f"{self.action} {self.identity}"
        if self.deposed_id is not None:
            label += f" (deposed {self.deposed_id})"
        elif self.replacement is not None and self.action is not ChangeAction.REPLACE:
            label += f" (replacement, {self.replacement})"
        return label


@dataclass(slots=True)
class ChangeSet:
    """Every entry produced by one diff, NOOPs included."""

    entries: list[ChangeSetEntry] = field(default_factory=list["ChangeSetEntry"])
    interrupted: tuple[Intent, ...] = ()

    def __iter__(self) -> Iterator[ChangeSetEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def add(self, entry: ChangeSetEntry) -> None:
        self.entries.append(entry)

    def with_action(self, action: ChangeAction) -> tuple[ChangeSetEntry, ...]:
        return tuple(entry for entry in self.entries if entry.action is action)

    def entry_for(self, identity: ResourceIdentity) -> ChangeSetEntry | None:
        for entry in self.entries:
            if entry.identity == identity and entry.deposed_id is None:
                return entry
        return None

    @property
    def has_changes(self) -> bool:
        return any(entry.action is not ChangeAction.NOOP for entry in self.entries)

    def counts(self) -> dict[ChangeAction, int]:
        counted = Counter(entry.action for entry in self.entries)
        return {action: counted.get(action, 0) for action in ChangeAction}
