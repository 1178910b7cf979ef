"""In-memory resource provider with scripted failures."""

from __future__ import annotations

import itertools
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from provisio.domain.errors import ProviderError, ResourceNotFoundError
from provisio.domain.model import plain
from provisio.domain.ports import ProviderResult, ResourceProvider

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True, slots=True)
class ProviderCall:
    operation: str
    resource_type: str
    provider_id: str | None
    payload: Mapping[str, object] = field(default_factory=dict["str", "object"])


@dataclass(slots=True)
class _ScriptedFailure:
    operation: str
    resource_type: str
    name: str | None
    errors: deque[ProviderError]


class FakeProvider:
    """Stores objects in a dict keyed by provider id.

    Provider ids are ``<type>/<name>/<serial>`` so that every create, including the
    create half of a replacement, yields a fresh id. ``events`` records start and
    finish of every mutating call in order, for concurrency assertions.
    """

    def __init__(self, *, delay: float = 0.0) -> None:
        self.objects: dict[str, dict[str, object]] = {}
        self.types: dict[str, str] = {}
        self.calls: list[ProviderCall] = []
        self.events: list[tuple[str, str]] = []
        self.delay = delay
        self.max_in_flight = 0
        self._in_flight = 0
        self._serial = itertools.count(1)
        self._failures: list[_ScriptedFailure] = []
        self._lock = threading.Lock()
        self.closed = False

    # scripting -------------------------------------------------------------

    def fail(
        self,
        operation: str,
        resource_type: str,
        *,
        name: str | None = None,
        error: ProviderError | None = None,
        times: int = 1,
    ) -> None:
        """Make the next ``times`` matching calls raise ``error``."""

        failure = error or ProviderError(f"scripted {operation} failure on {resource_type}")
        self._failures.append(
            _ScriptedFailure(
                operation=operation,
                resource_type=resource_type,
                name=name,
                errors=deque([failure] * times),
            )
        )

    def vanish(self, provider_id: str) -> None:
        del self.objects[provider_id]

    def drift(self, provider_id: str, **attributes: object) -> None:
        self.objects[provider_id].update(attributes)

    def id_for(self, resource_type: str, name: str) -> str:
        for provider_id, attributes in self.objects.items():
            if self.types[provider_id] == resource_type and attributes.get("name") == name:
                return provider_id
        raise KeyError(f"{resource_type}/{name}")

    def operations(self, operation: str | None = None) -> list[ProviderCall]:
        return [call for call in self.calls if operation is None or call.operation == operation]

    def mutations(self) -> list[ProviderCall]:
        return [call for call in self.calls if call.operation != "read"]

    # port ------------------------------------------------------------------

    def create(self, resource_type: str, attributes: Mapping[str, object]) -> ProviderResult:
        name = str(attributes.get("name", "unnamed"))
        with self._tracked("create", resource_type, name, None, attributes):
            provider_id = f"{resource_type}/{name}/{next(self._serial)}"
            with self._lock:
                self.objects[provider_id] = dict(plain(dict(attributes)))  # type: ignore[arg-type]
                self.types[provider_id] = resource_type
            return ProviderResult(provider_id=provider_id, outputs=self._outputs(provider_id))

    def update(
        self,
        resource_type: str,
        provider_id: str,
        changes: Mapping[str, object],
    ) -> Mapping[str, object]:
        name = self._name(provider_id)
        with self._tracked("update", resource_type, name, provider_id, changes):
            current = self._existing(provider_id)
            with self._lock:
                for key, value in changes.items():
                    if value is None:
                        current.pop(key, None)
                    else:
                        current[key] = plain(value)
            return self._outputs(provider_id)

    def delete(self, resource_type: str, provider_id: str) -> None:
        name = self._name(provider_id)
        with self._tracked("delete", resource_type, name, provider_id, {}):
            self._existing(provider_id)
            with self._lock:
                del self.objects[provider_id]

    def read(self, resource_type: str, provider_id: str) -> Mapping[str, object]:
        with self._lock:
            self.calls.append(ProviderCall("read", resource_type, provider_id))
        return dict(self._existing(provider_id))

    def close(self) -> None:
        self.closed = True

    # internals -------------------------------------------------------------

    def _existing(self, provider_id: str) -> dict[str, object]:
        try:
            return self.objects[provider_id]
        except KeyError:
            raise ResourceNotFoundError(provider_id) from None

    def _name(self, provider_id: str) -> str | None:
        parts = provider_id.split("/")
        return parts[1] if len(parts) == 3 else None  # noqa: PLR2004

    def _outputs(self, provider_id: str) -> dict[str, object]:
        serial = provider_id.rsplit("/", 1)[-1]
        return {"id": provider_id, "private_ip": f"10.0.1.{serial}"}

    def _take_failure(
        self, operation: str, resource_type: str, name: str | None
    ) -> ProviderError | None:
        with self._lock:
            for failure in self._failures:
                if (
                    failure.errors
                    and failure.operation == operation
                    and failure.resource_type == resource_type
                    and (failure.name is None or failure.name == name)
                ):
                    return failure.errors.popleft()
        return None

    def _tracked(
        self,
        operation: str,
        resource_type: str,
        name: str | None,
        provider_id: str | None,
        payload: Mapping[str, object],
    ) -> _Tracked:
        return _Tracked(self, operation, resource_type, name, provider_id, payload)


class _Tracked:
    def __init__(
        self,
        provider: FakeProvider,
        operation: str,
        resource_type: str,
        name: str | None,
        provider_id: str | None,
        payload: Mapping[str, object],
    ) -> None:
        self.provider = provider
        self.operation = operation
        self.resource_type = resource_type
        self.label = f"{operation} {resource_type}.{name}"
        self.name = name
        self.provider_id = provider_id
        self.payload = dict(payload)

    def __enter__(self) -> None:
        provider = self.provider
        with provider._lock:  # noqa: SLF001
            provider.calls.append(
                ProviderCall(self.operation, self.resource_type, self.provider_id, self.payload)
            )
            provider.events.append(("start", self.label))
            provider._in_flight += 1  # noqa: SLF001
            in_flight = provider._in_flight  # noqa: SLF001
            provider.max_in_flight = max(provider.max_in_flight, in_flight)
        failure = provider._take_failure(  # noqa: SLF001
            self.operation, self.resource_type, self.name
        )
        if provider.delay:
            time.sleep(provider.delay)
        if failure is not None:
            self._finish()
            raise failure

    def __exit__(self, *exc_info: object) -> None:
        self._finish()

    def _finish(self) -> None:
        provider = self.provider
        with provider._lock:  # noqa: SLF001
            provider.events.append(("finish", self.label))
            provider._in_flight -= 1  # noqa: SLF001


if TYPE_CHECKING:
    _provider_check: ResourceProvider = FakeProvider()
