"""SQLAlchemy adapter package for provisio."""

from __future__ import annotations

from .lifecycle import StartupError, configured_engine, is_started, shutdown, startup
from .mappings import (
    create_all_tables,
    mapper_registry,
    state_intent_table,
    state_lock_table,
    state_record_table,
)
from .state_store import SqlAlchemyStateStore

__all__ = [
    "SqlAlchemyStateStore",
    "StartupError",
    "configured_engine",
    "create_all_tables",
    "is_started",
    "mapper_registry",
    "shutdown",
    "startup",
    "state_intent_table",
    "state_lock_table",
    "state_record_table",
]
