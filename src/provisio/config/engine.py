"""Reconciliation engine defaults."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from .env import env_float, env_int

DEFAULT_WORKERS: Final[int] = 1
DEFAULT_MAX_ATTEMPTS: Final[int] = 4
DEFAULT_BACKOFF_FACTOR: Final[float] = 0.5
DEFAULT_MAX_BACKOFF: Final[float] = 60.0


@dataclass(frozen=True, slots=True)
class EngineConfig:
    workers: int = DEFAULT_WORKERS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
    max_backoff: float = DEFAULT_MAX_BACKOFF
    run_timeout: float | None = None


def get_engine_config() -> EngineConfig:
    return EngineConfig(
        workers=env_int("PROVISIO_WORKERS", DEFAULT_WORKERS, minimum=1),
        max_attempts=env_int("PROVISIO_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS, minimum=1),
        backoff_factor=env_float("PROVISIO_BACKOFF_FACTOR", DEFAULT_BACKOFF_FACTOR)
        or 0.0,
        max_backoff=env_float("PROVISIO_MAX_BACKOFF", DEFAULT_MAX_BACKOFF) or 0.0,
        run_timeout=env_float("PROVISIO_RUN_TIMEOUT", None),
    )
