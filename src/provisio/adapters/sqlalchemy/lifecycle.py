"""Engine lifecycle for the SQLAlchemy state adapter."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import create_engine

from provisio.adapters.sqlalchemy.migrations import upgrade_head
from provisio.config import get_database_config

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)


class StartupError(RuntimeError):
    """Raised when the SQLAlchemy adapter is used before initialisation."""


@dataclass(slots=True)
class _AdapterState:
    engine: Engine | None = None

    def require_engine(self) -> Engine:
        if self.engine is None:
            raise StartupError(
                "SQLAlchemy adapter not initialised. Call provisio.adapters.sqlalchemy."
                "startup() before opening a state store."
            )
        return self.engine


_STATE = _AdapterState()


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> Engine:
    """Create (or adopt) the engine and migrate the schema to head."""

    if _STATE.engine is not None and not force:
        raise StartupError(
            "SQLAlchemy adapter already initialised. Pass force=True to reconfigure."
        )

    resolved_engine = engine or create_engine(database_uri or get_database_config().uri)
    log.info("Migrating state database %s", resolved_engine.url.render_as_string())
    upgrade_head(engine=resolved_engine)
    _STATE.engine = resolved_engine
    return resolved_engine


def configured_engine() -> Engine:
    """Return the engine currently managed by the adapter."""

    return _STATE.require_engine()


def is_started() -> bool:
    return _STATE.engine is not None


def shutdown() -> None:
    """Dispose the managed engine and reset state (primarily for tests)."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None
