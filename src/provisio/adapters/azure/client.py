"""Resource provider backed by the Azure Resource Manager REST API."""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from logging import getLogger
from typing import TYPE_CHECKING, Any, Final, cast

import httpx
from pydantic import ValidationError

from provisio.adapters.http_resilience import ResilientClient
from provisio.config import get_azure_config
from provisio.domain.errors import ProviderError, ResourceNotFoundError
from provisio.domain.ports import ProviderResult, ResourceProvider

from .catalog import arm_kinds_by_type
from .schema import SUCCEEDED, ArmErrorResponse, ArmResource
from .translator import decode_attributes, decode_outputs, encode_body, merge_changes

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from provisio.config import AzureConfig, ResilienceConfig

    from .catalog import ArmResourceKind

log = getLogger(__name__)

# 409 codes ARM returns for operations that may succeed later
_RETRYABLE_CONFLICTS: Final[frozenset[str]] = frozenset(
    {"AnotherOperationInProgress", "RetryableError"}
)


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


class ArmAPIError(ProviderError):
    """Raised when ARM rejects a request."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message, transient=transient)
        self.status_code = status_code
        self.code = code


def _error_from_response(response: httpx.Response, provider_id: str) -> ProviderError:
    status = response.status_code
    if status == httpx.codes.NOT_FOUND:
        return ResourceNotFoundError(provider_id)

    code: str | None = None
    message = f"ARM request failed with HTTP {status} for {provider_id}"
    try:
        envelope = ArmErrorResponse.model_validate_json(response.content)
    except ValidationError:
        pass
    else:
        code = envelope.error.code
        message = f"{message}: {envelope.describe()}"

    transient = (
        status == httpx.codes.TOO_MANY_REQUESTS
        or status >= httpx.codes.INTERNAL_SERVER_ERROR
        or (status == httpx.codes.CONFLICT and code in _RETRYABLE_CONFLICTS)
    )
    return ArmAPIError(message, status_code=status, code=code, transient=transient)


@dataclass(slots=True)
class AzureResourceProvider:
    """Create, update, delete and read ARM resources for the shipped catalog.

    One handle owns one ``ResilientClient`` for its lifetime, so the rate limit and
    the connection pool span every call of a run. The client lives on a private
    event loop thread; port calls from any executor thread are submitted to it and
    block until done. Long-running operations are polled by re-reading the resource
    until ``provisioningState`` settles. ``close`` stops the loop.
    """

    config: AzureConfig = field(default_factory=get_azure_config)
    kinds: Mapping[str, ArmResourceKind] = field(default_factory=arm_kinds_by_type)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    async_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    _client: ResilientClient | None = field(default=None, init=False, repr=False)
    _loop: asyncio.AbstractEventLoop | None = field(default=None, init=False, repr=False)
    _thread: threading.Thread | None = field(default=None, init=False, repr=False)
    _guard: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __enter__(self) -> AzureResourceProvider:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def create(self, resource_type: str, attributes: Mapping[str, object]) -> ProviderResult:
        kind = self._kind(resource_type)
        provider_id = kind.resource_id(self.config.subscription_id, attributes)
        body = encode_body(kind, attributes)
        payload = self._run(lambda client: self._put(client, kind, provider_id, body))
        return ProviderResult(provider_id=provider_id, outputs=decode_outputs(kind, payload))

    def update(
        self,
        resource_type: str,
        provider_id: str,
        changes: Mapping[str, object],
    ) -> Mapping[str, object]:
        kind = self._kind(resource_type)

        async def do_update(client: ResilientClient) -> dict[str, Any]:
            current = await self._get(client, kind, provider_id)
            body = merge_changes(kind, current, changes)
            return await self._put(client, kind, provider_id, body)

        payload = self._run(do_update)
        return decode_outputs(kind, payload)

    def delete(self, resource_type: str, provider_id: str) -> None:
        kind = self._kind(resource_type)
        self._run(lambda client: self._delete(client, kind, provider_id))

    def read(self, resource_type: str, provider_id: str) -> Mapping[str, object]:
        kind = self._kind(resource_type)
        payload = self._run(lambda client: self._get(client, kind, provider_id))
        return decode_attributes(kind, payload)

    def close(self) -> None:
        with self._guard:
            loop, thread = self._loop, self._thread
            self._loop = None
            self._thread = None
        if loop is None or thread is None:
            return
        try:
            asyncio.run_coroutine_threadsafe(self._close_client(), loop).result()
        finally:
            loop.call_soon_threadsafe(loop.stop)
            thread.join()
            loop.close()
        log.debug("Closed ARM client")

    def _kind(self, resource_type: str) -> ArmResourceKind:
        try:
            return self.kinds[resource_type]
        except KeyError:
            raise ProviderError(f"Unsupported resource type: {resource_type}") from None

    def _resilience(self) -> ResilienceConfig:
        resilience = self.config.resilience
        headers = dict(resilience.default_headers or {})
        headers["Authorization"] = f"Bearer {self.config.access_token}"
        return replace(resilience, default_headers=headers)

    def _event_loop(self) -> asyncio.AbstractEventLoop:
        with self._guard:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                thread = threading.Thread(target=loop.run_forever, name="arm-client", daemon=True)
                thread.start()
                self._loop = loop
                self._thread = thread
            return self._loop

    def _run[T](self, func: Callable[[ResilientClient], Awaitable[T]]) -> T:
        future = asyncio.run_coroutine_threadsafe(self._call(func), self._event_loop())
        return future.result()

    async def _call[T](self, func: Callable[[ResilientClient], Awaitable[T]]) -> T:
        # only the loop thread touches the client
        if self._client is None:
            self._client = self.client_factory(self._resilience())
        return await func(self._client)

    async def _close_client(self) -> None:
        client = self._client
        self._client = None
        if client is not None:
            await client.aclose()

    async def _put(
        self,
        client: ResilientClient,
        kind: ArmResourceKind,
        provider_id: str,
        body: dict[str, Any],
    ) -> dict[str, Any]:
        log.info("PUT %s", provider_id)
        response = await self._send(
            client.put(provider_id, params={"api-version": kind.api_version}, json=body),
            provider_id,
        )
        if response.content:
            payload = _json_object(response, provider_id)
        else:
            payload = await self._get(client, kind, provider_id)
        return await self._await_provisioning(client, kind, provider_id, payload)

    async def _get(
        self,
        client: ResilientClient,
        kind: ArmResourceKind,
        provider_id: str,
    ) -> dict[str, Any]:
        response = await self._send(
            client.get(provider_id, params={"api-version": kind.api_version}), provider_id
        )
        return _json_object(response, provider_id)

    async def _delete(
        self,
        client: ResilientClient,
        kind: ArmResourceKind,
        provider_id: str,
    ) -> None:
        log.info("DELETE %s", provider_id)
        response = await self._send(
            client.delete(provider_id, params={"api-version": kind.api_version}), provider_id
        )
        if response.status_code == httpx.codes.NO_CONTENT:
            raise ResourceNotFoundError(provider_id)
        if response.status_code != httpx.codes.ACCEPTED:
            return
        deadline = time.monotonic() + self.config.poll_timeout
        while time.monotonic() < deadline:
            await self.async_sleep(self.config.poll_interval)
            try:
                await self._get(client, kind, provider_id)
            except ResourceNotFoundError:
                return
        raise ProviderError(f"Timed out waiting for deletion of {provider_id}", transient=True)

    async def _await_provisioning(
        self,
        client: ResilientClient,
        kind: ArmResourceKind,
        provider_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        deadline = time.monotonic() + self.config.poll_timeout
        resource = _arm_resource(payload, provider_id)
        while not resource.settled:
            if time.monotonic() >= deadline:
                raise ProviderError(
                    f"Timed out waiting for {provider_id} "
                    f"(provisioningState={resource.provisioning_state})",
                    transient=True,
                )
            log.debug("%s is %s; polling", provider_id, resource.provisioning_state)
            await self.async_sleep(self.config.poll_interval)
            payload = await self._get(client, kind, provider_id)
            resource = _arm_resource(payload, provider_id)
        if resource.provisioning_state != SUCCEEDED:
            raise ArmAPIError(
                f"Provisioning of {provider_id} ended in state {resource.provisioning_state}",
                code=resource.provisioning_state,
            )
        return payload

    async def _send(
        self,
        request: Awaitable[httpx.Response],
        provider_id: str,
    ) -> httpx.Response:
        try:
            response = await request
        except httpx.HTTPError as exc:
            raise ProviderError(
                f"ARM request for {provider_id} failed: {exc}", transient=True
            ) from exc
        if response.is_error:
            raise _error_from_response(response, provider_id)
        return response


def _json_object(response: httpx.Response, provider_id: str) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise ProviderError(f"ARM returned invalid JSON for {provider_id}") from exc
    if not isinstance(payload, dict):
        raise ProviderError(f"Unexpected ARM payload for {provider_id}")
    return cast(dict[str, Any], payload)


def _arm_resource(payload: Mapping[str, Any], provider_id: str) -> ArmResource:
    try:
        return ArmResource.model_validate(payload)
    except ValidationError as exc:
        raise ProviderError(f"Unexpected ARM resource envelope for {provider_id}") from exc


if TYPE_CHECKING:
    _provider_check: ResourceProvider = AzureResourceProvider()
