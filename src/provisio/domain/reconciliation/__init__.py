"""Reconciliation core: move recorded cloud state toward declared resources.

Layered flow of one run:
1) load and validate declarations against the resource catalog
2) build the dependency graph (declarations plus orphan records)
3) diff declarations against recorded and live provider state
4) order the changeset into barrier phases
5) execute the plan, recording every outcome in the state store
"""

from __future__ import annotations

from .changeset import AttributeDiff, ChangeSet, ChangeSetEntry
from .diff import diff
from .engine import ApplyReport, PlanReport, ReconciliationEngine
from .execute import (
    ApplyResult,
    EntryOutcome,
    EntryRetryPolicy,
    EntryStatus,
    Executor,
)
from .graph import DependencyGraph, GraphNode, build, find_cycle
from .load import LoadedDeclarations, declaration_from_mapping, load, load_declarations
from .plan import Plan, plan

__all__ = [
    "ApplyReport",
    "ApplyResult",
    "AttributeDiff",
    "ChangeSet",
    "ChangeSetEntry",
    "DependencyGraph",
    "EntryOutcome",
    "EntryRetryPolicy",
    "EntryStatus",
    "Executor",
    "GraphNode",
    "LoadedDeclarations",
    "Plan",
    "PlanReport",
    "ReconciliationEngine",
    "build",
    "declaration_from_mapping",
    "diff",
    "find_cycle",
    "load",
    "load_declarations",
    "plan",
]
