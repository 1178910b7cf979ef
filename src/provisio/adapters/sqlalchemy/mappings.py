"""SQLAlchemy table metadata for reconciliation state."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Dialect,
    String,
    Table,
    TypeDecorator,
    orm,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Core tables -----------------------------------------------------------------

state_record_table = Table(
    "state_record",
    mapper_registry.metadata,
    Column("deployment", String(200), primary_key=True),
    Column("resource_type", String(100), primary_key=True),
    Column("resource_name", String(200), primary_key=True),
    Column("provider_id", String(1024), nullable=False),
    Column("content_hash", String(64), nullable=False),
    Column("attributes", JSON, nullable=False),
    Column("outputs", JSON, nullable=False),
    # "type.name" strings of the dependencies at apply time, for ordering orphan deletes
    Column("dependencies", JSON, nullable=False),
    Column("deposed", JSON, nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
)

state_lock_table = Table(
    "state_lock",
    mapper_registry.metadata,
    Column("deployment", String(200), primary_key=True),
    Column("owner", String(200), nullable=False),
    Column("acquired_at", UTCDateTime(), nullable=False),
)

state_intent_table = Table(
    "state_intent",
    mapper_registry.metadata,
    Column("deployment", String(200), primary_key=True),
    Column("resource_type", String(100), primary_key=True),
    Column("resource_name", String(200), primary_key=True),
    Column("action", String(16), nullable=False),
    Column("started_at", UTCDateTime(), nullable=False),
)


def create_all_tables(engine: Engine) -> None:
    """Create state tables without migrations (scratch databases only)."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)
