"""Dependency graph over declarations and recorded orphans.

Edges point from a resource to the resources it depends on. Declared nodes take
their edges from references and ``depends_on``; orphan nodes (recorded but no longer
declared) take them from the dependencies stored with their state record, so that
deletes can be ordered dependents-first.

The graph is immutable once built. Topological order is computed on demand; both
directions are needed by the planner.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING

from provisio.domain.errors import CycleError, SchemaError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from provisio.domain.model import ResourceDeclaration, ResourceIdentity, StateRecord


@dataclass(frozen=True, slots=True)
class GraphNode:
    identity: ResourceIdentity
    declaration: ResourceDeclaration | None = None
    record: StateRecord | None = None

    @property
    def orphan(self) -> bool:
        return self.declaration is None


class _Colour(Enum):
    WHITE = auto()
    GREY = auto()
    BLACK = auto()


class DependencyGraph:
    """Acyclic dependency graph for one run."""

    def __init__(
        self,
        nodes: Mapping[ResourceIdentity, GraphNode],
        edges: Mapping[ResourceIdentity, tuple[ResourceIdentity, ...]],
    ) -> None:
        self._nodes = dict(sorted(nodes.items()))
        self._dependencies = {identity: edges.get(identity, ()) for identity in self._nodes}
        dependents: dict[ResourceIdentity, list[ResourceIdentity]] = {
            identity: [] for identity in self._nodes
        }
        for identity, dependencies in self._dependencies.items():
            for dependency in dependencies:
                dependents[dependency].append(identity)
        self._dependents = {
            identity: tuple(sorted(items)) for identity, items in dependents.items()
        }
        self._order: tuple[ResourceIdentity, ...] | None = None

    def __contains__(self, identity: object) -> bool:
        return identity in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def identities(self) -> tuple[ResourceIdentity, ...]:
        return tuple(self._nodes)

    @property
    def declarations(self) -> tuple[ResourceDeclaration, ...]:
        return tuple(
            node.declaration for node in self._nodes.values() if node.declaration is not None
        )

    @property
    def orphans(self) -> tuple[StateRecord, ...]:
        return tuple(
            node.record
            for node in self._nodes.values()
            if node.declaration is None and node.record is not None
        )

    def node(self, identity: ResourceIdentity) -> GraphNode:
        return self._nodes[identity]

    def dependencies_of(self, identity: ResourceIdentity) -> tuple[ResourceIdentity, ...]:
        return self._dependencies[identity]

    def dependents_of(self, identity: ResourceIdentity) -> tuple[ResourceIdentity, ...]:
        return self._dependents[identity]

    def ancestors(self, identity: ResourceIdentity) -> frozenset[ResourceIdentity]:
        """Transitive dependencies of ``identity``."""

        return self._closure(identity, upstream=True)

    def descendants(self, identity: ResourceIdentity) -> frozenset[ResourceIdentity]:
        """Transitive dependents of ``identity``."""

        return self._closure(identity, upstream=False)

    def topological_order(self) -> tuple[ResourceIdentity, ...]:
        """Dependencies before dependents; ties broken by identity order."""

        return self._topological_order()

    def reverse_topological_order(self) -> tuple[ResourceIdentity, ...]:
        return tuple(reversed(self._topological_order()))

    def _topological_order(self) -> tuple[ResourceIdentity, ...]:
        if self._order is not None:
            return self._order
        remaining = {identity: len(deps) for identity, deps in self._dependencies.items()}
        ready = [identity for identity, count in remaining.items() if count == 0]
        heapq.heapify(ready)
        ordered: list[ResourceIdentity] = []
        while ready:
            identity = heapq.heappop(ready)
            ordered.append(identity)
            for dependent in self._dependents[identity]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, dependent)
        if len(ordered) != len(self._nodes):
            # build() rejects cycles, so this only fires for hand-made graphs
            raise CycleError(find_cycle(self._dependencies) or ())
        self._order = tuple(ordered)
        return self._order

    def _closure(
        self, identity: ResourceIdentity, *, upstream: bool
    ) -> frozenset[ResourceIdentity]:
        neighbours = self._dependencies if upstream else self._dependents
        seen: set[ResourceIdentity] = set()
        stack = list(neighbours[identity])
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(neighbours[current])
        return frozenset(seen)


def build(
    declarations: Iterable[ResourceDeclaration],
    *,
    orphans: Iterable[StateRecord] = (),
) -> DependencyGraph:
    """Build the dependency graph; raises ``CycleError`` with the full cycle path."""

    orphan_records = tuple(orphans)
    nodes: dict[ResourceIdentity, GraphNode] = {}
    edges: dict[ResourceIdentity, tuple[ResourceIdentity, ...]] = {}
    for declaration in declarations:
        nodes[declaration.identity] = GraphNode(declaration.identity, declaration=declaration)
        edges[declaration.identity] = declaration.dependencies()

    for record in orphan_records:
        if record.identity in nodes:
            continue
        nodes[record.identity] = GraphNode(record.identity, record=record)

    for record in orphan_records:
        if nodes[record.identity].declaration is None:
            edges[record.identity] = tuple(
                dependency for dependency in record.dependencies if dependency in nodes
            )

    dangling = [
        f"{identity}: depends on unknown resource {dependency}"
        for identity, dependencies in sorted(edges.items())
        for dependency in dependencies
        if dependency not in nodes
    ]
    if dangling:
        raise SchemaError("Unresolved dependencies", problems=dangling)

    cycle = find_cycle(edges)
    if cycle is not None:
        raise CycleError(cycle)
    return DependencyGraph(nodes, edges)


def find_cycle(
    edges: Mapping[ResourceIdentity, tuple[ResourceIdentity, ...]],
) -> tuple[ResourceIdentity, ...] | None:
    """Depth-first three-colour search; returns the cycle path closed on its start."""

    colour = dict.fromkeys(edges, _Colour.WHITE)
    for root in sorted(edges):
        if colour[root] is not _Colour.WHITE:
            continue
        path: list[ResourceIdentity] = [root]
        iterators = [iter(sorted(edges[root]))]
        colour[root] = _Colour.GREY
        while iterators:
            dependency = next(iterators[-1], None)
            if dependency is None:
                colour[path.pop()] = _Colour.BLACK
                iterators.pop()
                continue
            state = colour.get(dependency, _Colour.BLACK)
            if state is _Colour.GREY:
                start = path.index(dependency)
                return (*path[start:], dependency)
            if state is _Colour.WHITE:
                colour[dependency] = _Colour.GREY
                path.append(dependency)
                iterators.append(iter(sorted(edges[dependency])))
    return None
