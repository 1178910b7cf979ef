"""Azure Resource Manager configuration values."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final

from .env import env_float, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig

ARM_BASE_URL: Final[str] = "https://management.azure.com"
ARM_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_POLL_INTERVAL: Final[float] = 5.0
DEFAULT_POLL_TIMEOUT: Final[float] = 1800.0


@dataclass(frozen=True)
class AzureConfig:
    """Holds ARM API configuration values.

    ``access_token`` is a bearer token for ``https://management.azure.com/`` as
    printed by ``az account get-access-token``.
    """

    subscription_id: str
    access_token: str
    resilience: ResilienceConfig
    poll_interval: float = DEFAULT_POLL_INTERVAL
    poll_timeout: float = DEFAULT_POLL_TIMEOUT


def default_arm_resilience(base_url: str = ARM_BASE_URL) -> ResilienceConfig:
    return ResilienceConfig(
        name="azure-arm",
        base_url=base_url,
        timeout_seconds=ARM_TIMEOUT_SECONDS,
        # ARM throttles writes at roughly 1200 per hour per subscription
        ratelimit=RateLimit(max_calls=10, per_seconds=1.0),
    )


def get_azure_config(*, resilience: ResilienceConfig | None = None) -> AzureConfig:
    values = require_env_vars(("AZURE_SUBSCRIPTION_ID", "AZURE_ACCESS_TOKEN"))
    base_url = os.getenv("AZURE_ARM_BASE_URL") or ARM_BASE_URL
    return AzureConfig(
        subscription_id=values["AZURE_SUBSCRIPTION_ID"],
        access_token=values["AZURE_ACCESS_TOKEN"],
        resilience=resilience or default_arm_resilience(base_url),
        poll_interval=env_float("AZURE_POLL_INTERVAL", DEFAULT_POLL_INTERVAL)
        or DEFAULT_POLL_INTERVAL,
        poll_timeout=env_float("AZURE_POLL_TIMEOUT", DEFAULT_POLL_TIMEOUT) or DEFAULT_POLL_TIMEOUT,
    )
