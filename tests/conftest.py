from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.pool import StaticPool

from provisio.adapters.sqlalchemy import SqlAlchemyStateStore, shutdown, startup
from provisio.adapters.sqlalchemy.migrations import upgrade_head
from tests.support.catalog import make_catalog
from tests.support.provider import FakeProvider
from tests.support.state import InMemoryStateStore

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Iterator

    from provisio.domain.model import ResourceCatalog


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    # one shared connection so executor threads see the same in-memory database
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    upgrade_head(engine=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_store(sqlite_engine: Engine) -> Iterator[SqlAlchemyStateStore]:
    startup(engine=sqlite_engine, force=True)
    try:
        yield SqlAlchemyStateStore("test")
    finally:
        shutdown()


@pytest.fixture
def catalog() -> ResourceCatalog:
    return make_catalog()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()
