"""Orchestrator for one reconciliation run.

The engine composes the stages (graph, diff, plan, execute) around a run lock on
the state store. It does not prescribe concrete adapters: the provider and store
are injected, one handle each per run.
"""

from __future__ import annotations

import logging
import os
import socket
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .diff import diff
from .execute import ApplyResult, EntryRetryPolicy, Executor
from .graph import build
from .load import LoadedDeclarations
from .plan import plan as order_changeset

if TYPE_CHECKING:
    from collections.abc import Iterator

    from provisio.domain.model import ResourceCatalog
    from provisio.domain.ports import ResourceProvider, StateStore

    from .changeset import ChangeSet
    from .graph import DependencyGraph
    from .plan import Plan

log = logging.getLogger(__name__)


def default_lock_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


@dataclass(frozen=True, slots=True)
class PlanReport:
    plan: Plan

    @property
    def changeset(self) -> ChangeSet:
        return self.plan.changeset

    @property
    def has_changes(self) -> bool:
        return bool(self.plan)


@dataclass(frozen=True, slots=True)
class ApplyReport:
    plan: Plan
    result: ApplyResult

    @property
    def has_changes(self) -> bool:
        return bool(self.plan)

    @property
    def partial(self) -> bool:
        return self.result.partial


@dataclass(slots=True, kw_only=True)
class ReconciliationEngine:
    """Plan and apply declarations against one deployment's state."""

    catalog: ResourceCatalog
    store: StateStore
    provider: ResourceProvider
    retry: EntryRetryPolicy = field(default_factory=EntryRetryPolicy)
    workers: int = 1
    run_timeout: float | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event)
    lock_owner: str = field(default_factory=default_lock_owner)

    def graph(self, declarations: LoadedDeclarations) -> DependencyGraph:
        """Build the dependency graph; raises ``CycleError`` before any provider call."""

        return build(declarations)

    def plan(self, declarations: LoadedDeclarations) -> PlanReport:
        with self._locked():
            return PlanReport(self._plan(declarations))

    def apply(self, declarations: LoadedDeclarations) -> ApplyReport:
        """Reconcile the deployment toward ``declarations`` and report per-entry outcomes."""

        # cycles and dangling edges fail here, before the lock and any provider call
        build(declarations)
        with self._locked(), self._deadline():
            # the timeout covers the provider reads of the diff as well
            planned = self._plan(declarations)
            if not planned:
                log.info("No changes for deployment %s", self.store.deployment)
                return ApplyReport(plan=planned, result=ApplyResult())
            executor = Executor(
                provider=self.provider,
                store=self.store,
                retry=self.retry,
                workers=self.workers,
                cancel_event=self.cancel_event,
            )
            result = executor.apply(planned)
            return ApplyReport(plan=planned, result=result)

    def destroy(self) -> ApplyReport:
        """Delete every recorded resource of the deployment."""

        return self.apply(LoadedDeclarations())

    def _plan(self, declarations: LoadedDeclarations) -> Plan:
        records = self.store.records()
        orphans = [record for record in records if record.identity not in declarations]
        graph = build(declarations, orphans=orphans)
        changeset = diff(graph, store=self.store, provider=self.provider, catalog=self.catalog)
        planned = order_changeset(changeset, graph)
        log.info(
            "Planned %s entries across %s phase(s) for deployment %s",
            len(planned),
            len(planned.phases),
            self.store.deployment,
        )
        return planned

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self.store.lock(self.lock_owner):
            log.info("Acquired state lock for %s as %s", self.store.deployment, self.lock_owner)
            try:
                yield
            finally:
                log.info("Releasing state lock for %s", self.store.deployment)

    @contextmanager
    def _deadline(self) -> Iterator[None]:
        if self.run_timeout is None:
            yield
            return
        timer = threading.Timer(self.run_timeout, self._on_timeout)
        timer.daemon = True
        timer.start()
        try:
            yield
        finally:
            timer.cancel()

    def _on_timeout(self) -> None:
        log.warning("Run timeout of %ss reached; cancelling", self.run_timeout)
        self.cancel_event.set()
