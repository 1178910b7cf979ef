"""SQLAlchemy-backed state store.

One store instance serves one deployment. Every mutating call runs in its own
transaction; calls are serialised with a process-local lock so executor threads can
share the instance. The run lock is a row in ``state_lock``: its primary key makes
a second acquisition fail, across processes as well.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from provisio.domain.errors import StateLockError, StoreError
from provisio.domain.model import ChangeAction, Intent, ResourceIdentity, StateRecord, plain

from .lifecycle import configured_engine
from .mappings import state_intent_table, state_lock_table, state_record_table

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from sqlalchemy import ColumnElement, Connection, Row, Table
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)


class SqlAlchemyStateStore:
    def __init__(self, deployment: str, *, engine: Engine | None = None) -> None:
        self._deployment = deployment
        self._engine = engine or configured_engine()
        self._mutex = threading.RLock()

    @property
    def deployment(self) -> str:
        return self._deployment

    def read(self, identity: ResourceIdentity) -> StateRecord | None:
        with self._connection() as connection:
            row = connection.execute(
                select(state_record_table).where(
                    self._identity_clause(state_record_table, identity)
                )
            ).one_or_none()
        return None if row is None else _record_from_row(row)

    def records(self) -> tuple[StateRecord, ...]:
        with self._connection() as connection:
            rows = connection.execute(
                select(state_record_table)
                .where(state_record_table.c.deployment == self._deployment)
                .order_by(state_record_table.c.resource_type, state_record_table.c.resource_name)
            ).all()
        return tuple(_record_from_row(row) for row in rows)

    def write(self, record: StateRecord) -> None:
        values = {
            "provider_id": record.provider_id,
            "content_hash": record.content_hash,
            "attributes": plain(dict(record.attributes)),
            "outputs": plain(dict(record.outputs)),
            "dependencies": [str(identity) for identity in record.dependencies],
            "deposed": list(record.deposed),
            "updated_at": datetime.now(tz=UTC),
        }
        with self._connection() as connection:
            result = connection.execute(
                update(state_record_table)
                .where(self._identity_clause(state_record_table, record.identity))
                .values(**values)
            )
            if result.rowcount == 0:
                connection.execute(
                    insert(state_record_table).values(
                        deployment=self._deployment,
                        resource_type=record.identity.type,
                        resource_name=record.identity.name,
                        **values,
                    )
                )
            self._clear_intent(connection, record.identity)
        log.debug("Recorded %s as %s", record.identity, record.provider_id)

    def delete(self, identity: ResourceIdentity) -> None:
        with self._connection() as connection:
            connection.execute(
                delete(state_record_table).where(
                    self._identity_clause(state_record_table, identity)
                )
            )
            self._clear_intent(connection, identity)
        log.debug("Removed %s from state", identity)

    @contextmanager
    def lock(self, owner: str) -> Iterator[None]:
        self._acquire(owner)
        try:
            yield
        finally:
            self._release(owner)

    def force_unlock(self) -> bool:
        with self._connection() as connection:
            result = connection.execute(
                delete(state_lock_table).where(state_lock_table.c.deployment == self._deployment)
            )
        released = result.rowcount > 0
        if released:
            log.warning("Force-released state lock for %s", self._deployment)
        return released

    def begin_intent(self, identity: ResourceIdentity, action: ChangeAction) -> None:
        with self._connection() as connection:
            self._clear_intent(connection, identity)
            connection.execute(
                insert(state_intent_table).values(
                    deployment=self._deployment,
                    resource_type=identity.type,
                    resource_name=identity.name,
                    action=str(action),
                    started_at=datetime.now(tz=UTC),
                )
            )

    def end_intent(self, identity: ResourceIdentity) -> None:
        with self._connection() as connection:
            self._clear_intent(connection, identity)

    def pending_intents(self) -> tuple[Intent, ...]:
        with self._connection() as connection:
            rows = connection.execute(
                select(state_intent_table)
                .where(state_intent_table.c.deployment == self._deployment)
                .order_by(state_intent_table.c.resource_type, state_intent_table.c.resource_name)
            ).all()
        return tuple(
            Intent(
                identity=ResourceIdentity(row.resource_type, row.resource_name),
                action=ChangeAction(row.action),
                started_at=row.started_at,
            )
            for row in rows
        )

    def _acquire(self, owner: str) -> None:
        try:
            with self._connection() as connection:
                connection.execute(
                    insert(state_lock_table).values(
                        deployment=self._deployment,
                        owner=owner,
                        acquired_at=datetime.now(tz=UTC),
                    )
                )
        except StoreError as exc:
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            raise StateLockError(self._deployment, holder=self._lock_holder()) from exc
        log.debug("Lock for %s acquired by %s", self._deployment, owner)

    def _release(self, owner: str) -> None:
        with self._connection() as connection:
            connection.execute(
                delete(state_lock_table).where(
                    and_(
                        state_lock_table.c.deployment == self._deployment,
                        state_lock_table.c.owner == owner,
                    )
                )
            )

    def _lock_holder(self) -> str | None:
        with self._connection() as connection:
            return connection.execute(
                select(state_lock_table.c.owner).where(
                    state_lock_table.c.deployment == self._deployment
                )
            ).scalar_one_or_none()

    def _clear_intent(self, connection: Connection, identity: ResourceIdentity) -> None:
        connection.execute(
            delete(state_intent_table).where(self._identity_clause(state_intent_table, identity))
        )

    def _identity_clause(self, table: Table, identity: ResourceIdentity) -> ColumnElement[bool]:
        return and_(
            table.c.deployment == self._deployment,
            table.c.resource_type == identity.type,
            table.c.resource_name == identity.name,
        )

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        with self._mutex:
            try:
                with self._engine.begin() as connection:
                    yield connection
            except SQLAlchemyError as exc:
                raise StoreError(f"State store failure for {self._deployment}: {exc}") from exc


def _record_from_row(row: Row[Any]) -> StateRecord:
    return StateRecord(
        identity=ResourceIdentity(row.resource_type, row.resource_name),
        provider_id=row.provider_id,
        content_hash=row.content_hash,
        attributes=cast("Mapping[str, object]", row.attributes),
        outputs=cast("Mapping[str, object]", row.outputs),
        dependencies=tuple(ResourceIdentity.parse(item) for item in row.dependencies),
        deposed=tuple(row.deposed),
        updated_at=row.updated_at,
    )
