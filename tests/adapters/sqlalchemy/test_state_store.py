from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine, insert, inspect

from provisio.adapters.sqlalchemy import (
    SqlAlchemyStateStore,
    StartupError,
    configured_engine,
    shutdown,
    startup,
    state_lock_table,
)
from provisio.domain.errors import StateLockError, StoreError
from provisio.domain.model import ChangeAction, ResourceIdentity, StateRecord
from provisio.domain.reconciliation import ReconciliationEngine
from tests.support.catalog import declarations, stack
from tests.support.provider import FakeProvider

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy.engine import Engine

    from provisio.domain.model import ResourceCatalog

NETWORK = ResourceIdentity("network", "main")
SUBNET = ResourceIdentity("subnet", "app")


@pytest.fixture(autouse=True)
def reset_adapter_state() -> Iterator[None]:
    shutdown()
    yield
    shutdown()


def _record(identity: ResourceIdentity, **overrides: object) -> StateRecord:
    values: dict[str, object] = {
        "identity": identity,
        "provider_id": f"/{identity.type}/{identity.name}",
        "content_hash": "abc123",
        "attributes": {"name": identity.name, "tags": {"env": "dev"}, "ports": (80, 443)},
        "outputs": {"id": f"/{identity.type}/{identity.name}"},
    }
    values.update(overrides)
    return StateRecord(**values)  # type: ignore[arg-type]


def test_store_requires_startup() -> None:
    with pytest.raises(StartupError):
        SqlAlchemyStateStore("dev")


def test_startup_requires_force_for_reconfiguration() -> None:
    engine_a = create_engine("sqlite+pysqlite:///:memory:")
    engine_b = create_engine("sqlite+pysqlite:///:memory:")

    startup(engine=engine_a, force=True)

    with pytest.raises(StartupError):
        startup(engine=engine_b)

    startup(engine=engine_b, force=True)
    assert configured_engine() is engine_b


def test_migrations_create_state_tables(sqlite_engine: Engine) -> None:
    tables = set(inspect(sqlite_engine).get_table_names())

    assert {"state_record", "state_lock", "state_intent", "alembic_version"} <= tables


def test_write_read_and_overwrite_records(sqlite_store: SqlAlchemyStateStore) -> None:
    sqlite_store.write(_record(SUBNET, dependencies=(NETWORK,), deposed=("/subnet/old",)))
    sqlite_store.write(_record(NETWORK))

    subnet = sqlite_store.read(SUBNET)
    assert subnet is not None
    assert subnet.dependencies == (NETWORK,)
    assert subnet.deposed == ("/subnet/old",)
    assert subnet.attributes == {"name": "app", "tags": {"env": "dev"}, "ports": [80, 443]}
    assert subnet.updated_at.tzinfo is UTC
    assert [record.identity for record in sqlite_store.records()] == [NETWORK, SUBNET]

    sqlite_store.write(_record(SUBNET, provider_id="/subnet/new"))

    rewritten = sqlite_store.read(SUBNET)
    assert rewritten is not None
    assert rewritten.provider_id == "/subnet/new"
    assert rewritten.deposed == ()
    assert len(sqlite_store.records()) == 2


def test_records_are_scoped_per_deployment(sqlite_store: SqlAlchemyStateStore) -> None:
    other = SqlAlchemyStateStore("prod")
    sqlite_store.write(_record(NETWORK))

    assert other.records() == ()
    assert other.read(NETWORK) is None


def test_delete_removes_record(sqlite_store: SqlAlchemyStateStore) -> None:
    sqlite_store.write(_record(NETWORK))

    sqlite_store.delete(NETWORK)
    sqlite_store.delete(NETWORK)

    assert sqlite_store.read(NETWORK) is None


def test_intents_are_cleared_by_write_and_delete(sqlite_store: SqlAlchemyStateStore) -> None:
    sqlite_store.begin_intent(NETWORK, ChangeAction.CREATE)
    sqlite_store.begin_intent(SUBNET, ChangeAction.DELETE)

    pending = sqlite_store.pending_intents()
    assert [(intent.identity, intent.action) for intent in pending] == [
        (NETWORK, ChangeAction.CREATE),
        (SUBNET, ChangeAction.DELETE),
    ]

    sqlite_store.write(_record(NETWORK))
    sqlite_store.delete(SUBNET)

    assert sqlite_store.pending_intents() == ()


def test_begin_intent_replaces_previous_intent(sqlite_store: SqlAlchemyStateStore) -> None:
    sqlite_store.begin_intent(NETWORK, ChangeAction.CREATE)
    sqlite_store.begin_intent(NETWORK, ChangeAction.UPDATE)

    assert [intent.action for intent in sqlite_store.pending_intents()] == [ChangeAction.UPDATE]

    sqlite_store.end_intent(NETWORK)
    assert sqlite_store.pending_intents() == ()


def test_lock_is_exclusive_and_released(sqlite_store: SqlAlchemyStateStore) -> None:
    second = SqlAlchemyStateStore("test")

    with sqlite_store.lock("host-a:1"):
        with pytest.raises(StateLockError) as excinfo, second.lock("host-b:2"):
            pass
        assert excinfo.value.holder == "host-a:1"

    with second.lock("host-b:2"):
        pass


def test_lock_is_released_when_the_body_raises(sqlite_store: SqlAlchemyStateStore) -> None:
    with pytest.raises(RuntimeError), sqlite_store.lock("host-a:1"):
        raise RuntimeError("boom")

    with sqlite_store.lock("host-a:1"):
        pass


def test_force_unlock_removes_a_stale_lock(sqlite_store: SqlAlchemyStateStore) -> None:
    with configured_engine().begin() as connection:
        connection.execute(
            insert(state_lock_table).values(
                deployment="test", owner="crashed:9", acquired_at=datetime.now(tz=UTC)
            )
        )

    assert sqlite_store.force_unlock()
    assert not sqlite_store.force_unlock()
    with sqlite_store.lock("host-a:1"):
        pass


def test_database_errors_surface_as_store_errors(sqlite_store: SqlAlchemyStateStore) -> None:
    with configured_engine().begin() as connection:
        connection.exec_driver_sql("DROP TABLE state_record")

    with pytest.raises(StoreError):
        sqlite_store.records()


def test_engine_round_trip_against_sqlite(
    sqlite_store: SqlAlchemyStateStore, catalog: ResourceCatalog
) -> None:
    provider = FakeProvider()
    engine = ReconciliationEngine(
        catalog=catalog, store=sqlite_store, provider=provider, workers=3
    )

    first = engine.apply(declarations(stack()))
    second = engine.apply(declarations(stack()))
    destroyed = engine.destroy()

    assert len(first.result.succeeded) == 3
    assert not second.has_changes
    assert len(destroyed.result.succeeded) == 3
    assert sqlite_store.records() == ()
    assert provider.objects == {}
