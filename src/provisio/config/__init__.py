"""Application configuration helpers."""

from __future__ import annotations

from .azure import AzureConfig, default_arm_resilience, get_azure_config
from .engine import EngineConfig, get_engine_config
from .env import env_float, env_int, require_env_vars
from .errors import (
    ConfigurationError,
    InvalidConfigurationValueError,
    MissingConfigurationError,
)
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy
from .logging import configure_logging
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config

__all__ = [
    "AzureConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "EngineConfig",
    "InvalidConfigurationValueError",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "StorageConfig",
    "configure_logging",
    "default_arm_resilience",
    "env_float",
    "env_int",
    "get_azure_config",
    "get_database_config",
    "get_engine_config",
    "get_storage_config",
    "require_env_vars",
]
