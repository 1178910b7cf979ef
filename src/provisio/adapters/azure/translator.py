"""Translate between declared attributes and ARM request/response bodies."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, cast

if TYPE_CHECKING:
    from .catalog import ArmResourceKind, FieldMapping

_MISSING = object()


def _get_path(payload: Mapping[str, Any], path: tuple[str, ...]) -> object:
    current: object = payload
    for segment in path:
        if not isinstance(current, Mapping):
            return _MISSING
        current = cast(Mapping[str, object], current).get(segment, _MISSING)
        if current is _MISSING:
            return _MISSING
    return current


def _set_path(body: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    current = body
    for segment in path[:-1]:
        current = current.setdefault(segment, {})
    current[path[-1]] = value


def _drop_path(body: dict[str, Any], path: tuple[str, ...]) -> None:
    parent = _get_path(body, path[:-1]) if len(path) > 1 else body
    if isinstance(parent, dict):
        cast(dict[str, Any], parent).pop(path[-1], None)


def _encoded(mapping: FieldMapping, value: object) -> object:
    return mapping.encode(value) if mapping.encode is not None else value


def encode_body(kind: ArmResourceKind, attributes: Mapping[str, object]) -> dict[str, Any]:
    """Build a full PUT body from resolved attributes."""

    body: dict[str, Any] = {"properties": {}}
    for mapping in kind.fields:
        value = attributes.get(mapping.attribute)
        if value is None:
            continue
        _set_path(body, mapping.path, _encoded(mapping, value))
    if kind.body_hook is not None:
        kind.body_hook(body, attributes)
    return body


def merge_changes(
    kind: ArmResourceKind,
    current: Mapping[str, Any],
    changes: Mapping[str, object],
) -> dict[str, Any]:
    """Apply ``changes`` onto a GET payload, producing the PUT body of an update."""

    body: dict[str, Any] = {
        key: value for key, value in current.items() if key not in {"id", "name", "type", "etag"}
    }
    body["properties"] = {
        key: value
        for key, value in cast(Mapping[str, Any], current.get("properties", {})).items()
        if key != "provisioningState"
    }
    by_attribute = {mapping.attribute: mapping for mapping in kind.fields}
    for name, value in changes.items():
        mapping = by_attribute.get(name)
        if mapping is None:
            continue
        if value is None:
            _drop_path(body, mapping.path)
        else:
            _set_path(body, mapping.path, _encoded(mapping, value))
    if kind.body_hook is not None:
        kind.body_hook(body, {**decode_attributes(kind, current), **changes})
    return body


def _decode_fields(
    fields: tuple[FieldMapping, ...],
    payload: Mapping[str, Any],
) -> dict[str, object]:
    decoded: dict[str, object] = {}
    for mapping in fields:
        raw = _get_path(payload, mapping.path)
        if raw is _MISSING:
            continue
        decoded[mapping.attribute] = mapping.decode(raw) if mapping.decode is not None else raw
    return decoded


def decode_attributes(kind: ArmResourceKind, payload: Mapping[str, Any]) -> dict[str, object]:
    """Live attribute values found in a GET payload; secrets are never echoed by ARM."""

    decoded = _decode_fields(kind.fields, payload)
    for secret in kind.secret_attributes:
        decoded.pop(secret, None)
    if isinstance(payload.get("name"), str):
        decoded["name"] = payload["name"]
    return decoded


def decode_outputs(kind: ArmResourceKind, payload: Mapping[str, Any]) -> dict[str, object]:
    outputs = _decode_fields(kind.outputs, payload)
    if isinstance(payload.get("id"), str):
        outputs["id"] = payload["id"]
    return outputs
