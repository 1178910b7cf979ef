"""Shared fixtures for Azure Resource Manager adapter tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest

from provisio.adapters.azure import AzureResourceProvider
from provisio.adapters.http_resilience import ResilientClient
from provisio.config import AzureConfig, ResilienceConfig, RetryPolicy
from tests.support.arm import SUBSCRIPTION, ArmRecorder

if TYPE_CHECKING:
    from collections.abc import Iterator


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def arm_config() -> AzureConfig:
    return AzureConfig(
        subscription_id=SUBSCRIPTION,
        access_token="test-token",
        resilience=ResilienceConfig(
            name="azure-arm-test",
            base_url="https://arm.test",
            retry=RetryPolicy(total=0),
        ),
        poll_interval=0.0,
        poll_timeout=5.0,
    )


@pytest.fixture
def arm() -> ArmRecorder:
    return ArmRecorder()


@pytest.fixture
def arm_provider(arm_config: AzureConfig, arm: ArmRecorder) -> Iterator[AzureResourceProvider]:
    def client_factory(config: ResilienceConfig) -> ResilientClient:
        return ResilientClient(config, transport=httpx.MockTransport(arm))

    with AzureResourceProvider(
        config=arm_config,
        client_factory=client_factory,
        async_sleep=_no_sleep,
    ) as provider:
        yield provider
