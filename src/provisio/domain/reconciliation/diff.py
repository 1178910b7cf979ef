"""Differ: desired declarations against recorded and live state.

Responsibilities of this stage:
- classify every declaration as CREATE, UPDATE, REPLACE or NOOP
- classify every orphan record (and every deposed object) as DELETE
- re-read live provider state before trusting a record (drift reconciliation)
- compute attribute-level diffs, flagging immutable attributes

Declarations are visited in topological order so that a reference to a resource
that is itself being created or replaced resolves to ``UNKNOWN``, which always
counts as a change.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from provisio.domain.errors import ResourceNotFoundError
from provisio.domain.model import (
    UNKNOWN,
    ChangeAction,
    resolve_value,
    values_equal,
)

from .changeset import AttributeDiff, ChangeSet, ChangeSetEntry

if TYPE_CHECKING:
    from collections.abc import Mapping

    from provisio.domain.model import (
        Reference,
        ResourceCatalog,
        ResourceDeclaration,
        ResourceIdentity,
        ResourceType,
        StateRecord,
    )
    from provisio.domain.ports import ResourceProvider, StateStore

    from .graph import DependencyGraph

log = logging.getLogger(__name__)


def diff(
    graph: DependencyGraph,
    *,
    store: StateStore,
    provider: ResourceProvider,
    catalog: ResourceCatalog,
) -> ChangeSet:
    """Compute the changeset that moves recorded state toward ``graph``."""

    interrupted = store.pending_intents()
    for intent in interrupted:
        log.warning(
            "Interrupted %s on %s detected (started %s); re-reading provider state",
            intent.action,
            intent.identity,
            intent.started_at.isoformat(),
        )

    records = {record.identity: record for record in store.records()}
    changeset = ChangeSet(interrupted=interrupted)
    unsettled: set[ResourceIdentity] = set()

    for identity in graph.topological_order():
        declaration = graph.node(identity).declaration
        if declaration is None:
            continue
        entry = _diff_declaration(
            declaration,
            record=records.get(identity),
            resource_type=catalog.get(identity.type),
            provider=provider,
            records=records,
            unsettled=unsettled,
        )
        if entry.action in {ChangeAction.CREATE, ChangeAction.REPLACE}:
            unsettled.add(identity)
        changeset.add(entry)

    for record in graph.orphans:
        changeset.add(
            ChangeSetEntry(
                action=ChangeAction.DELETE,
                identity=record.identity,
                record=record,
                reason="no longer declared",
            )
        )

    for identity in graph.identities:
        record = records.get(identity)
        if record is None:
            continue
        for deposed_id in record.deposed:
            changeset.add(
                ChangeSetEntry(
                    action=ChangeAction.DELETE,
                    identity=identity,
                    record=record,
                    deposed_id=deposed_id,
                    reason="deposed by an earlier replacement",
                )
            )

    log.info(
        "Diff complete: %s",
        ", ".join(f"{action}={count}" for action, count in changeset.counts().items()),
    )
    return changeset


def _diff_declaration(
    declaration: ResourceDeclaration,
    *,
    record: StateRecord | None,
    resource_type: ResourceType,
    provider: ResourceProvider,
    records: Mapping[ResourceIdentity, StateRecord],
    unsettled: set[ResourceIdentity],
) -> ChangeSetEntry:
    identity = declaration.identity
    if record is None:
        return ChangeSetEntry(
            action=ChangeAction.CREATE,
            identity=identity,
            declaration=declaration,
            reason="not in state",
        )

    try:
        live = provider.read(identity.type, record.provider_id)
    except ResourceNotFoundError:
        log.warning("Drift: %s (%s) no longer exists", identity, record.provider_id)
        return ChangeSetEntry(
            action=ChangeAction.CREATE,
            identity=identity,
            declaration=declaration,
            record=record,
            drift=True,
            reason="missing from provider",
        )

    def lookup(reference: Reference) -> object:
        if reference.target in unsettled:
            return UNKNOWN
        target = records.get(reference.target)
        return UNKNOWN if target is None else target.value_for(reference.attribute)

    desired = {
        name: resolve_value(value, lookup) for name, value in declaration.attributes.items()
    }
    drift = _drifted(record, live)
    diffs = _attribute_diffs(desired, record=record, live=live, resource_type=resource_type)

    if not diffs and not drift and declaration.content_hash() == record.content_hash:
        return ChangeSetEntry(
            action=ChangeAction.NOOP,
            identity=identity,
            declaration=declaration,
            record=record,
        )

    if drift:
        log.warning("Drift: %s differs from recorded state", identity)

    if any(item.immutable for item in diffs):
        return ChangeSetEntry(
            action=ChangeAction.REPLACE,
            identity=identity,
            declaration=declaration,
            record=record,
            diffs=diffs,
            replacement=resource_type.replacement,
            drift=drift,
            reason="immutable attribute changed",
        )
    return ChangeSetEntry(
        action=ChangeAction.UPDATE,
        identity=identity,
        declaration=declaration,
        record=record,
        diffs=diffs,
        drift=drift,
        reason="attributes changed" if diffs else "declaration changed",
    )


def _drifted(record: StateRecord, live: Mapping[str, object]) -> bool:
    return any(
        name in live and not values_equal(live[name], value)
        for name, value in record.attributes.items()
    )


def _attribute_diffs(
    desired: Mapping[str, object],
    *,
    record: StateRecord,
    live: Mapping[str, object],
    resource_type: ResourceType,
) -> tuple[AttributeDiff, ...]:
    immutable = resource_type.immutable_attributes
    diffs: list[AttributeDiff] = []
    for name in sorted(set(desired) | set(record.attributes)):
        new = desired.get(name)
        old = live[name] if name in live else record.attributes.get(name)
        if values_equal(old, new):
            continue
        diffs.append(AttributeDiff(name=name, old=old, new=new, immutable=name in immutable))
    return tuple(diffs)
