"""Recording ``httpx`` handler, a stateful ARM stand-in and payload builders for tests."""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from collections.abc import Callable

SUBSCRIPTION = "00000000-0000-0000-0000-000000000001"
RG_ID = f"/subscriptions/{SUBSCRIPTION}/resourceGroups/rg-dev"

type Handler = Callable[[httpx.Request], httpx.Response]


@dataclass
class ArmRecorder:
    """Routes requests to a handler and keeps every request for assertions."""

    handler: Handler | None = None
    requests: list[httpx.Request] = field(default_factory=list["httpx.Request"])

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.handler is None:
            return httpx.Response(500)
        return self.handler(request)

    def body(self, index: int) -> dict[str, Any]:
        return json.loads(self.requests[index].content)

    def methods(self) -> list[str]:
        return [request.method for request in self.requests]


def arm_resource(
    resource_id: str,
    *,
    state: str | None = "Succeeded",
    location: str | None = "westeurope",
    **properties: object,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": resource_id,
        "name": resource_id.rsplit("/", 1)[-1],
        "properties": dict(properties),
    }
    if state is not None:
        payload["properties"]["provisioningState"] = state
    if location is not None:
        payload["location"] = location
    return payload


@dataclass
class ArmEmulator:
    """In-memory resource store answering PUT, GET and DELETE the way ARM does.

    Stored resources gain what ARM adds on its side: ``id``, ``name``, a settled
    provisioning state, a canonical location, the resolved image ``exactVersion``
    of virtual machines and the dynamic private address of network interfaces.
    """

    resources: dict[str, dict[str, Any]] = field(default_factory=dict["str", "dict[str, Any]"])

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        match request.method:
            case "PUT":
                created = path not in self.resources
                stored = self._store(path, json.loads(request.content))
                return httpx.Response(201 if created else 200, json=stored)
            case "GET":
                if path not in self.resources:
                    return _not_found(path)
                return httpx.Response(200, json=self.resources[path])
            case "DELETE":
                if self.resources.pop(path, None) is None:
                    return httpx.Response(204)
                return httpx.Response(200)
            case _:
                return httpx.Response(405)

    def _store(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        payload = copy.deepcopy(body)
        payload["id"] = path
        payload["name"] = path.rsplit("/", 1)[-1]
        if isinstance(payload.get("location"), str):
            payload["location"] = payload["location"].replace(" ", "").lower()
        properties = payload.setdefault("properties", {})
        properties["provisioningState"] = "Succeeded"
        image = properties.get("storageProfile", {}).get("imageReference")
        if image is not None:
            image["exactVersion"] = "24.04.202409120"
            properties.setdefault("vmId", "5c1b9e0a-7f0e-4c53-9d0e-0d6c2a1f1a11")
        for index, configuration in enumerate(properties.get("ipConfigurations", [])):
            configuration.setdefault("properties", {}).setdefault(
                "privateIPAddress", f"10.0.1.{index + 4}"
            )
        self.resources[path] = payload
        return copy.deepcopy(payload)


def _not_found(path: str) -> httpx.Response:
    return httpx.Response(
        404,
        json={"error": {"code": "ResourceNotFound", "message": f"{path} was not found"}},
    )
