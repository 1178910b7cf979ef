from __future__ import annotations

from pathlib import Path

import pytest

from provisio.config import (
    EngineConfig,
    InvalidConfigurationValueError,
    MissingConfigurationError,
    get_azure_config,
    get_database_config,
    get_engine_config,
    get_storage_config,
    require_env_vars,
)
from provisio.config.azure import ARM_BASE_URL, DEFAULT_POLL_INTERVAL


def test_require_env_vars_returns_stripped_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXAMPLE_VAR", "  value ")

    result = require_env_vars(["EXAMPLE_VAR"])

    assert result["EXAMPLE_VAR"] == "value"


def test_require_env_vars_lists_every_missing_name(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MISSING_B", raising=False)
    monkeypatch.setenv("MISSING_A", "   ")

    with pytest.raises(MissingConfigurationError) as exc:
        require_env_vars(["MISSING_B", "MISSING_A"])

    assert "MISSING_A, MISSING_B" in str(exc.value)


def test_engine_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "PROVISIO_WORKERS",
        "PROVISIO_MAX_ATTEMPTS",
        "PROVISIO_BACKOFF_FACTOR",
        "PROVISIO_MAX_BACKOFF",
        "PROVISIO_RUN_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)

    assert get_engine_config() == EngineConfig()


def test_engine_config_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROVISIO_WORKERS", "8")
    monkeypatch.setenv("PROVISIO_MAX_ATTEMPTS", "2")
    monkeypatch.setenv("PROVISIO_RUN_TIMEOUT", "90.5")

    config = get_engine_config()

    assert config.workers == 8
    assert config.max_attempts == 2
    assert config.run_timeout == 90.5


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("PROVISIO_WORKERS", "many"),
        ("PROVISIO_WORKERS", "0"),
        ("PROVISIO_RUN_TIMEOUT", "-1"),
    ],
)
def test_engine_config_rejects_invalid_values(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(InvalidConfigurationValueError) as exc:
        get_engine_config()

    assert exc.value.name == name


def test_azure_config_requires_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("AZURE_SUBSCRIPTION_ID", raising=False)
    monkeypatch.delenv("AZURE_ACCESS_TOKEN", raising=False)

    with pytest.raises(MissingConfigurationError, match="AZURE_ACCESS_TOKEN"):
        get_azure_config()


def test_azure_config_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AZURE_SUBSCRIPTION_ID", "sub-1")
    monkeypatch.setenv("AZURE_ACCESS_TOKEN", "token")
    monkeypatch.delenv("AZURE_ARM_BASE_URL", raising=False)
    monkeypatch.delenv("AZURE_POLL_INTERVAL", raising=False)
    monkeypatch.setenv("AZURE_POLL_TIMEOUT", "60")

    config = get_azure_config()

    assert config.subscription_id == "sub-1"
    assert config.resilience.base_url == ARM_BASE_URL
    assert config.resilience.ratelimit is not None
    assert config.poll_interval == DEFAULT_POLL_INTERVAL
    assert config.poll_timeout == 60.0


def test_database_uri_prefers_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URI", "postgresql+psycopg://state")

    assert get_database_config().uri == "postgresql+psycopg://state"


def test_database_defaults_to_sqlite_in_data_dir(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.delenv("DATABASE_URI", raising=False)
    monkeypatch.setenv("PROVISIO_DATA_DIR", str(tmp_path / "data"))

    uri = get_database_config().uri

    assert uri == f"sqlite+pysqlite:///{tmp_path.resolve() / 'data' / 'state.db'}"
    assert (tmp_path / "data").is_dir()
    assert get_storage_config().data_dir == Path(tmp_path / "data")
