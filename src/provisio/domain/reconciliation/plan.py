"""Planner: order a changeset along the dependency graph.

Plans run in three phases, each a barrier for the next:

1. deletes, plus the delete half of delete-before-create replacements
   (dependents before dependencies)
2. creates and updates, plus the create half of every replacement
   (dependencies before dependents)
3. the delete half of create-before-delete replacements and deposed objects
   (dependents before dependencies)

NOOP entries are not planned.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from provisio.domain.errors import OrderError
from provisio.domain.model import ChangeAction, ReplacementOrder

if TYPE_CHECKING:
    from collections.abc import Iterator

    from provisio.domain.model import ResourceIdentity

    from .changeset import ChangeSet, ChangeSetEntry
    from .graph import DependencyGraph


@dataclass(frozen=True, slots=True)
class Plan:
    """Ordered entries of one run, grouped in barrier phases."""

    graph: DependencyGraph
    changeset: ChangeSet
    phases: tuple[tuple[ChangeSetEntry, ...], ...] = ()

    @property
    def entries(self) -> tuple[ChangeSetEntry, ...]:
        return tuple(entry for phase in self.phases for entry in phase)

    def __iter__(self) -> Iterator[ChangeSetEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return sum(len(phase) for phase in self.phases)

    def __bool__(self) -> bool:
        return any(self.phases)


def plan(changeset: ChangeSet, graph: DependencyGraph) -> Plan:
    """Order ``changeset`` along ``graph``; raises ``OrderError`` on unknown entries."""

    rank: dict[ResourceIdentity, int] = {
        identity: index for index, identity in enumerate(graph.topological_order())
    }
    early_deletes: list[ChangeSetEntry] = []
    applies: list[ChangeSetEntry] = []
    late_deletes: list[ChangeSetEntry] = []

    for entry in changeset:
        if entry.identity not in rank:
            raise OrderError(f"Changeset entry {entry.describe()} is not part of the graph")
        match entry.action:
            case ChangeAction.NOOP:
                continue
            case ChangeAction.CREATE | ChangeAction.UPDATE:
                applies.append(entry)
            case ChangeAction.DELETE:
                (late_deletes if entry.deposed_id is not None else early_deletes).append(entry)
            case ChangeAction.REPLACE:
                delete_half, create_half = _split_replacement(entry)
                if entry.replacement is ReplacementOrder.CREATE_BEFORE_DELETE:
                    late_deletes.append(delete_half)
                else:
                    early_deletes.append(delete_half)
                applies.append(create_half)

    early_deletes.sort(key=lambda entry: -rank[entry.identity])
    applies.sort(key=lambda entry: rank[entry.identity])
    late_deletes.sort(key=lambda entry: -rank[entry.identity])

    phases = tuple(phase for phase in (early_deletes, applies, late_deletes) if phase)
    return Plan(graph=graph, changeset=changeset, phases=tuple(tuple(p) for p in phases))


def _split_replacement(entry: ChangeSetEntry) -> tuple[ChangeSetEntry, ChangeSetEntry]:
    if entry.record is None or entry.declaration is None:
        raise OrderError(f"Replacement of {entry.identity} needs both state and declaration")
    order = entry.replacement or ReplacementOrder.DELETE_BEFORE_CREATE
    delete_half = replace(
        entry,
        action=ChangeAction.DELETE,
        replacement=order,
        deposed_id=(
            entry.record.provider_id
            if order is ReplacementOrder.CREATE_BEFORE_DELETE
            else None
        ),
    )
    create_half = replace(entry, action=ChangeAction.CREATE, replacement=order)
    return delete_half, create_half
