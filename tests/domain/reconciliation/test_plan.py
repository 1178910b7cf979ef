from __future__ import annotations

import pytest

from provisio.domain.errors import OrderError
from provisio.domain.model import (
    ChangeAction,
    ReplacementOrder,
    ResourceDeclaration,
    ResourceIdentity,
    StateRecord,
)
from provisio.domain.reconciliation import ChangeSet, ChangeSetEntry, build, plan
from tests.support.catalog import declarations, stack

NETWORK = ResourceIdentity("network", "main")
SUBNET = ResourceIdentity("subnet", "app")
VM = ResourceIdentity("vm", "web")


def _record(identity: ResourceIdentity, *dependencies: ResourceIdentity) -> StateRecord:
    return StateRecord(
        identity=identity,
        provider_id=f"{identity.type}/{identity.name}/1",
        content_hash="old",
        dependencies=dependencies,
    )


def _entry(
    action: ChangeAction,
    identity: ResourceIdentity,
    *,
    declaration: ResourceDeclaration | None = None,
    record: StateRecord | None = None,
    replacement: ReplacementOrder | None = None,
    deposed_id: str | None = None,
) -> ChangeSetEntry:
    return ChangeSetEntry(
        action=action,
        identity=identity,
        declaration=declaration,
        record=record,
        replacement=replacement,
        deposed_id=deposed_id,
    )


def test_creates_follow_dependency_order_and_noops_are_dropped() -> None:
    loaded = declarations(stack())
    graph = build(loaded)
    changeset = ChangeSet(
        [
            _entry(ChangeAction.CREATE, VM, declaration=loaded.get(VM)),
            _entry(ChangeAction.NOOP, SUBNET, declaration=loaded.get(SUBNET)),
            _entry(ChangeAction.CREATE, NETWORK, declaration=loaded.get(NETWORK)),
        ]
    )

    planned = plan(changeset, graph)

    assert len(planned.phases) == 1
    assert [entry.identity for entry in planned] == [NETWORK, VM]


def test_orphan_deletes_run_dependents_first() -> None:
    records = [
        _record(NETWORK),
        _record(SUBNET, NETWORK),
        _record(VM, SUBNET),
    ]
    graph = build([], orphans=records)
    changeset = ChangeSet(
        [_entry(ChangeAction.DELETE, record.identity, record=record) for record in records]
    )

    planned = plan(changeset, graph)

    assert [entry.identity for entry in planned] == [VM, SUBNET, NETWORK]


def test_delete_before_create_replacement_splits_into_early_delete() -> None:
    loaded = declarations(stack())
    graph = build(loaded)
    changeset = ChangeSet(
        [
            _entry(
                ChangeAction.REPLACE,
                NETWORK,
                declaration=loaded.get(NETWORK),
                record=_record(NETWORK),
                replacement=ReplacementOrder.DELETE_BEFORE_CREATE,
            ),
            _entry(
                ChangeAction.UPDATE,
                SUBNET,
                declaration=loaded.get(SUBNET),
                record=_record(SUBNET, NETWORK),
            ),
        ]
    )

    planned = plan(changeset, graph)

    assert [[(entry.action, entry.identity) for entry in phase] for phase in planned.phases] == [
        [(ChangeAction.DELETE, NETWORK)],
        [(ChangeAction.CREATE, NETWORK), (ChangeAction.UPDATE, SUBNET)],
    ]
    delete_half = planned.phases[0][0]
    assert delete_half.replacement is ReplacementOrder.DELETE_BEFORE_CREATE
    assert delete_half.deposed_id is None


def test_create_before_delete_replacement_deletes_old_object_last() -> None:
    certificate = ResourceIdentity("certificate", "tls")
    loaded = declarations({"certificate": {"tls": {"name": "tls", "domain": "example.org"}}})
    graph = build(loaded)
    record = _record(certificate)
    changeset = ChangeSet(
        [
            _entry(
                ChangeAction.REPLACE,
                certificate,
                declaration=loaded.get(certificate),
                record=record,
                replacement=ReplacementOrder.CREATE_BEFORE_DELETE,
            )
        ]
    )

    planned = plan(changeset, graph)

    assert [[entry.action for entry in phase] for phase in planned.phases] == [
        [ChangeAction.CREATE],
        [ChangeAction.DELETE],
    ]
    assert planned.phases[1][0].deposed_id == record.provider_id


def test_entries_outside_the_graph_raise_order_error() -> None:
    graph = build(declarations(stack()))
    stray = ResourceIdentity("vm", "stray")
    changeset = ChangeSet([_entry(ChangeAction.DELETE, stray, record=_record(stray))])

    with pytest.raises(OrderError):
        plan(changeset, graph)


def test_empty_changeset_gives_falsy_plan() -> None:
    planned = plan(ChangeSet(), build(declarations(stack())))

    assert not planned
    assert len(planned) == 0
    assert planned.phases == ()
