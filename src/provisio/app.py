"""Application orchestration entry points."""

from __future__ import annotations

import threading
from collections.abc import Callable
from contextlib import closing
from logging import getLogger
from typing import TYPE_CHECKING, Final

from provisio.adapters.azure import AzureResourceProvider, build_catalog
from provisio.adapters.declarations import Deployment, load_environment
from provisio.adapters.sqlalchemy import SqlAlchemyStateStore, is_started, startup
from provisio.config import EngineConfig, get_engine_config
from provisio.domain.reconciliation import EntryRetryPolicy, ReconciliationEngine, build

if TYPE_CHECKING:
    from pathlib import Path

    from provisio.domain.model import ResourceCatalog, StateRecord
    from provisio.domain.ports import ResourceProvider, StateStore
    from provisio.domain.reconciliation import ApplyReport, PlanReport

type StoreFactory = Callable[[str], StateStore]
type ProviderFactory = Callable[[], ResourceProvider]

log = getLogger(__name__)


def ensure_state_database(*, database_uri: str | None = None) -> None:
    """Start the SQLAlchemy adapter once per process, migrating the schema to head."""

    if not is_started():
        startup(database_uri=database_uri)


_ENVIRONMENT_TEMPLATE: Final[str] = """\
[deployment]
name = "{deployment}"
location = "{location}"

[variables]

# [resources.resource_group.main]
# name = "rg-{deployment}"
"""


def init_environment(
    config_dir: Path,
    environment: str,
    *,
    deployment: str | None = None,
    location: str = "westeurope",
    database_uri: str | None = None,
) -> Path:
    """Migrate the state database and scaffold ``<environment>.toml`` if it is missing."""

    ensure_state_database(database_uri=database_uri)
    target = config_dir / f"{environment}.toml"
    if target.exists():
        log.info("Keeping existing declarations in %s", target)
        return target
    config_dir.mkdir(parents=True, exist_ok=True)
    target.write_text(
        _ENVIRONMENT_TEMPLATE.format(
            deployment=deployment or f"{config_dir.resolve().name}-{environment}",
            location=location,
        ),
        encoding="utf-8",
    )
    log.info("Created %s", target)
    return target


def _default_store_factory(deployment: str) -> StateStore:
    ensure_state_database()
    return SqlAlchemyStateStore(deployment)


def load_deployment(
    config_dir: Path,
    environment: str,
    *,
    catalog: ResourceCatalog | None = None,
) -> Deployment:
    """Load declarations and check the dependency graph; no provider or state access."""

    deployment = load_environment(config_dir, environment, catalog=catalog or build_catalog())
    build(deployment.declarations)
    return deployment


def build_engine(
    deployment: str,
    *,
    catalog: ResourceCatalog | None = None,
    provider_factory: ProviderFactory | None = None,
    store_factory: StoreFactory | None = None,
    engine_config: EngineConfig | None = None,
    cancel_event: threading.Event | None = None,
) -> ReconciliationEngine:
    config = engine_config or get_engine_config()
    return ReconciliationEngine(
        catalog=catalog or build_catalog(),
        store=(store_factory or _default_store_factory)(deployment),
        provider=(provider_factory or AzureResourceProvider)(),
        retry=EntryRetryPolicy(
            max_attempts=config.max_attempts,
            backoff_factor=config.backoff_factor,
            max_backoff_wait=config.max_backoff,
        ),
        workers=config.workers,
        run_timeout=config.run_timeout,
        cancel_event=cancel_event or threading.Event(),
    )


def plan_deployment(
    config_dir: Path,
    environment: str,
    *,
    catalog: ResourceCatalog | None = None,
    provider_factory: ProviderFactory | None = None,
    store_factory: StoreFactory | None = None,
    engine_config: EngineConfig | None = None,
) -> PlanReport:
    catalog = catalog or build_catalog()
    deployment = load_deployment(config_dir, environment, catalog=catalog)
    engine = build_engine(
        deployment.name,
        catalog=catalog,
        provider_factory=provider_factory,
        store_factory=store_factory,
        engine_config=engine_config,
    )
    with closing(engine.provider):
        return engine.plan(deployment.declarations)


def apply_deployment(
    config_dir: Path,
    environment: str,
    *,
    catalog: ResourceCatalog | None = None,
    provider_factory: ProviderFactory | None = None,
    store_factory: StoreFactory | None = None,
    engine_config: EngineConfig | None = None,
    cancel_event: threading.Event | None = None,
) -> ApplyReport:
    """Reconcile the deployment of ``environment`` toward its declarations."""

    catalog = catalog or build_catalog()
    deployment = load_deployment(config_dir, environment, catalog=catalog)
    engine = build_engine(
        deployment.name,
        catalog=catalog,
        provider_factory=provider_factory,
        store_factory=store_factory,
        engine_config=engine_config,
        cancel_event=cancel_event,
    )
    log.info("Applying deployment %s (%s)", deployment.name, environment)
    with closing(engine.provider):
        report = engine.apply(deployment.declarations)
    log.info(
        "Finished apply of %s: planned=%s, succeeded=%s, failed=%s, skipped=%s",
        deployment.name,
        len(report.plan),
        len(report.result.succeeded),
        len(report.result.failed),
        len(report.result.skipped),
    )
    return report


def destroy_deployment(
    config_dir: Path,
    environment: str,
    *,
    catalog: ResourceCatalog | None = None,
    provider_factory: ProviderFactory | None = None,
    store_factory: StoreFactory | None = None,
    engine_config: EngineConfig | None = None,
    cancel_event: threading.Event | None = None,
) -> ApplyReport:
    """Delete every resource recorded for the deployment of ``environment``."""

    catalog = catalog or build_catalog()
    deployment = load_environment(config_dir, environment, catalog=catalog)
    engine = build_engine(
        deployment.name,
        catalog=catalog,
        provider_factory=provider_factory,
        store_factory=store_factory,
        engine_config=engine_config,
        cancel_event=cancel_event,
    )
    log.info("Destroying deployment %s (%s)", deployment.name, environment)
    with closing(engine.provider):
        return engine.destroy()


def list_state(
    config_dir: Path,
    environment: str,
    *,
    store_factory: StoreFactory | None = None,
) -> tuple[StateRecord, ...]:
    deployment = load_environment(config_dir, environment, catalog=build_catalog())
    return (store_factory or _default_store_factory)(deployment.name).records()


def force_unlock(
    config_dir: Path,
    environment: str,
    *,
    store_factory: StoreFactory | None = None,
) -> bool:
    """Remove a stale run lock left behind by a crashed run."""

    deployment = load_environment(config_dir, environment, catalog=build_catalog())
    return (store_factory or _default_store_factory)(deployment.name).force_unlock()
