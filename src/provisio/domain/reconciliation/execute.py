"""Executor: apply a plan through the resource provider.

Every provider call is followed by the matching state write before any dependant
entry starts, so at most the in-flight entries can have an unrecorded outcome. An
intent is journalled before each provider call and cleared by the state write; an
intent that survives a crash is reported by the next diff.

On the first failed entry nothing new is dispatched: in-flight entries finish and
record, every remaining entry is reported as skipped. Cancellation behaves the same
way without a failure.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TYPE_CHECKING

from provisio.domain.errors import OrderError, ProviderError, ResourceNotFoundError
from provisio.domain.model import (
    ChangeAction,
    ReplacementOrder,
    StateRecord,
    resolve_value,
    values_equal,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from provisio.domain.model import Reference, ResourceDeclaration, ResourceIdentity
    from provisio.domain.ports import ResourceProvider, StateStore

    from .changeset import ChangeSetEntry
    from .graph import DependencyGraph
    from .plan import Plan

log = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class EntryRetryPolicy:
    """Retry budget for transient provider errors, per plan entry."""

    max_attempts: int = 4
    backoff_factor: float = 0.5
    max_backoff_wait: float = 60.0
    backoff_jitter: float = 0.2

    def backoff(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""

        base = min(self.backoff_factor * (2 ** (attempt - 1)), self.max_backoff_wait)
        return base + random.uniform(0, base * self.backoff_jitter)  # noqa: S311


class EntryStatus(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True, kw_only=True)
class EntryOutcome:
    entry: ChangeSetEntry
    status: EntryStatus
    attempts: int = 0
    error: ProviderError | None = None


@dataclass(slots=True)
class ApplyResult:
    """Per-entry outcomes in plan order."""

    outcomes: list[EntryOutcome] = field(default_factory=list["EntryOutcome"])
    cancelled: bool = False

    def _with_status(self, status: EntryStatus) -> tuple[EntryOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if outcome.status is status)

    @property
    def succeeded(self) -> tuple[EntryOutcome, ...]:
        return self._with_status(EntryStatus.SUCCEEDED)

    @property
    def failed(self) -> tuple[EntryOutcome, ...]:
        return self._with_status(EntryStatus.FAILED)

    @property
    def skipped(self) -> tuple[EntryOutcome, ...]:
        return self._with_status(EntryStatus.SKIPPED)

    @property
    def partial(self) -> bool:
        return bool(self.failed or self.skipped) or self.cancelled


@dataclass(slots=True, kw_only=True)
class Executor:
    """Apply plans entry by entry, or with ``workers`` threads across independent entries."""

    provider: ResourceProvider
    store: StateStore
    retry: EntryRetryPolicy = field(default_factory=EntryRetryPolicy)
    workers: int = 1
    cancel_event: threading.Event = field(default_factory=threading.Event)
    sleep: Callable[[float], None] = time.sleep

    def apply(self, plan: Plan) -> ApplyResult:
        result = ApplyResult()
        halted = False
        for phase in plan.phases:
            if halted or self.cancel_event.is_set():
                result.outcomes.extend(_skipped(phase))
                continue
            if self.workers > 1 and len(phase) > 1:
                outcomes = self._run_concurrently(phase, graph=plan.graph)
            else:
                outcomes = self._run_sequentially(phase, graph=plan.graph)
            result.outcomes.extend(outcomes)
            halted = any(outcome.status is EntryStatus.FAILED for outcome in outcomes)

        result.cancelled = self.cancel_event.is_set() and bool(result.skipped)
        log.info(
            "Apply finished: succeeded=%s, failed=%s, skipped=%s, cancelled=%s",
            len(result.succeeded),
            len(result.failed),
            len(result.skipped),
            result.cancelled,
        )
        return result

    def _run_sequentially(
        self,
        phase: Sequence[ChangeSetEntry],
        *,
        graph: DependencyGraph,
    ) -> list[EntryOutcome]:
        outcomes: list[EntryOutcome] = []
        for index, entry in enumerate(phase):
            if self.cancel_event.is_set():
                log.warning("Cancellation requested; not dispatching %s", entry.describe())
                outcomes.extend(_skipped(phase[index:]))
                break
            outcome = self._apply_entry(entry, graph=graph)
            outcomes.append(outcome)
            if outcome.status is EntryStatus.FAILED:
                outcomes.extend(_skipped(phase[index + 1 :]))
                break
        return outcomes

    def _run_concurrently(
        self,
        phase: Sequence[ChangeSetEntry],
        *,
        graph: DependencyGraph,
    ) -> list[EntryOutcome]:
        waits = _wait_sets(phase, graph=graph)
        outcomes: dict[int, EntryOutcome] = {}
        pending = list(range(len(phase)))
        committed: set[int] = set()
        running: dict[Future[EntryOutcome], int] = {}
        failed = False

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="apply") as pool:
            while pending or running:
                if not failed and not self.cancel_event.is_set():
                    for index in [i for i in pending if waits[i] <= committed]:
                        pending.remove(index)
                        future = pool.submit(self._apply_entry, phase[index], graph=graph)
                        running[future] = index
                if not running:
                    break
                finished, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in finished:
                    index = running.pop(future)
                    outcome = future.result()
                    outcomes[index] = outcome
                    if outcome.status is EntryStatus.SUCCEEDED:
                        committed.add(index)
                    else:
                        failed = True

        for index in pending:
            outcomes[index] = EntryOutcome(entry=phase[index], status=EntryStatus.SKIPPED)
        return [outcomes[index] for index in range(len(phase))]

    def _apply_entry(self, entry: ChangeSetEntry, *, graph: DependencyGraph) -> EntryOutcome:
        attempt = 0
        while True:
            attempt += 1
            try:
                self._dispatch(entry, graph=graph)
            except ProviderError as exc:
                retryable = (
                    exc.transient
                    and attempt < self.retry.max_attempts
                    and not self.cancel_event.is_set()
                )
                if not retryable:
                    log.error(  # noqa: TRY400
                        "Failed %s after %s attempt(s): %s", entry.describe(), attempt, exc
                    )
                    return EntryOutcome(
                        entry=entry, status=EntryStatus.FAILED, attempts=attempt, error=exc
                    )
                delay = self.retry.backoff(attempt)
                log.warning(
                    "Transient failure on %s (attempt %s/%s), retrying in %.1fs: %s",
                    entry.describe(),
                    attempt,
                    self.retry.max_attempts,
                    delay,
                    exc,
                )
                self.sleep(delay)
                continue
            log.info("Applied %s", entry.describe())
            return EntryOutcome(entry=entry, status=EntryStatus.SUCCEEDED, attempts=attempt)

    def _dispatch(self, entry: ChangeSetEntry, *, graph: DependencyGraph) -> None:
        match entry.action:
            case ChangeAction.CREATE:
                self._create(entry, graph=graph)
            case ChangeAction.UPDATE:
                self._update(entry, graph=graph)
            case ChangeAction.DELETE:
                if entry.deposed_id is not None:
                    self._delete_deposed(entry, deposed_id=entry.deposed_id)
                else:
                    self._delete(entry)
            case _:
                raise OrderError(f"Cannot execute {entry.describe()}")

    def _create(self, entry: ChangeSetEntry, *, graph: DependencyGraph) -> None:
        declaration = _require_declaration(entry)
        identity = entry.identity
        attributes = self._resolve(declaration)
        previous = self.store.read(identity)

        self.store.begin_intent(identity, ChangeAction.CREATE)
        try:
            result = self.provider.create(identity.type, attributes)
        except ProviderError:
            self.store.end_intent(identity)
            raise

        deposed = previous.deposed if previous is not None else ()
        if (
            entry.replacement is ReplacementOrder.CREATE_BEFORE_DELETE
            and previous is not None
            and previous.provider_id != result.provider_id
        ):
            deposed = (*deposed, previous.provider_id)
        self.store.write(
            StateRecord(
                identity=identity,
                provider_id=result.provider_id,
                content_hash=declaration.content_hash(),
                attributes=attributes,
                outputs=dict(result.outputs),
                dependencies=graph.dependencies_of(identity),
                deposed=deposed,
            )
        )

    def _update(self, entry: ChangeSetEntry, *, graph: DependencyGraph) -> None:
        declaration = _require_declaration(entry)
        identity = entry.identity
        record = self.store.read(identity)
        if record is None:
            raise OrderError(f"Cannot update {identity}: no recorded state")
        attributes = self._resolve(declaration)

        changed = {item.name for item in entry.diffs}
        changed.update(
            name
            for name in set(attributes) | set(record.attributes)
            if not values_equal(attributes.get(name), record.attributes.get(name))
        )
        outputs: dict[str, object] = dict(record.outputs)
        if changed:
            self.store.begin_intent(identity, ChangeAction.UPDATE)
            try:
                updated = self.provider.update(
                    identity.type,
                    record.provider_id,
                    {name: attributes.get(name) for name in sorted(changed)},
                )
            except ProviderError:
                self.store.end_intent(identity)
                raise
            outputs.update(updated)

        self.store.write(
            replace(
                record,
                content_hash=declaration.content_hash(),
                attributes=attributes,
                outputs=outputs,
                dependencies=graph.dependencies_of(identity),
            )
        )

    def _delete(self, entry: ChangeSetEntry) -> None:
        identity = entry.identity
        record = self.store.read(identity) or entry.record
        if record is None:
            log.info("%s already absent from state", identity)
            return
        self.store.begin_intent(identity, ChangeAction.DELETE)
        try:
            self.provider.delete(identity.type, record.provider_id)
        except ResourceNotFoundError:
            log.info("%s (%s) was already deleted", identity, record.provider_id)
        except ProviderError:
            self.store.end_intent(identity)
            raise
        self.store.delete(identity)

    def _delete_deposed(self, entry: ChangeSetEntry, *, deposed_id: str) -> None:
        identity = entry.identity
        current = self.store.read(identity)
        if current is not None and current.provider_id == deposed_id:
            log.warning(
                "%s: replacement reused provider id %s; nothing to delete", identity, deposed_id
            )
            return
        self.store.begin_intent(identity, ChangeAction.DELETE)
        try:
            self.provider.delete(identity.type, deposed_id)
        except ResourceNotFoundError:
            log.info("Deposed object %s of %s was already deleted", deposed_id, identity)
        except ProviderError:
            self.store.end_intent(identity)
            raise
        if current is None:
            self.store.end_intent(identity)
            return
        self.store.write(
            replace(current, deposed=tuple(item for item in current.deposed if item != deposed_id))
        )

    def _resolve(self, declaration: ResourceDeclaration) -> dict[str, object]:
        def lookup(reference: Reference) -> object:
            target = self.store.read(reference.target)
            if target is None:
                raise OrderError(
                    f"{declaration.identity} references {reference.target}, "
                    "which has no recorded state"
                )
            return target.value_for(reference.attribute)

        return {
            name: resolve_value(value, lookup) for name, value in declaration.attributes.items()
        }


def _require_declaration(entry: ChangeSetEntry) -> ResourceDeclaration:
    if entry.declaration is None:
        raise OrderError(f"{entry.describe()} has no declaration")
    return entry.declaration


def _skipped(entries: Sequence[ChangeSetEntry]) -> list[EntryOutcome]:
    return [EntryOutcome(entry=entry, status=EntryStatus.SKIPPED) for entry in entries]


def _wait_sets(
    phase: Sequence[ChangeSetEntry],
    *,
    graph: DependencyGraph,
) -> list[set[int]]:
    """For each entry, the earlier entries of the phase it must wait for."""

    related: dict[ResourceIdentity, frozenset[ResourceIdentity]] = {}
    for entry in phase:
        if entry.identity in related:
            continue
        if entry.action is ChangeAction.DELETE:
            related[entry.identity] = graph.descendants(entry.identity)
        else:
            related[entry.identity] = graph.ancestors(entry.identity)

    waits: list[set[int]] = []
    for index, entry in enumerate(phase):
        blockers = related[entry.identity]
        waits.append(
            {
                earlier
                for earlier in range(index)
                if phase[earlier].identity == entry.identity
                or phase[earlier].identity in blockers
            }
        )
    return waits
