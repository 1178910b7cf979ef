"""TOML declaration source with per-environment layering.

A configuration directory holds an optional ``common.toml`` and one
``<environment>.toml`` per environment. Both are deep-merged (the environment file
wins) into one document::

    [deployment]
    name = "shop-dev"
    location = "westeurope"          # default for types with a location
    tags = { team = "shop" }         # merged under each resource's own tags

    [variables]
    address_space = ["10.0.0.0/16"]

    [resources.resource_group.main]
    name = "rg-shop-dev"

    [resources.virtual_network.main]
    name = "vnet-shop-dev"
    resource_group_id = "${resource_group.main}"
    address_space = "${var.address_space}"

``${var.<name>}`` is substituted at load time: a whole-string placeholder takes the
variable's value as is, an embedded one is interpolated as text. Other ``${...}``
strings are resource references and are left to the resource model.
"""

from __future__ import annotations

import logging
import re
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final, cast

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from provisio.domain.errors import SchemaError
from provisio.domain.reconciliation import load

if TYPE_CHECKING:
    from pathlib import Path

    from provisio.domain.model import ResourceCatalog
    from provisio.domain.reconciliation import LoadedDeclarations

log = logging.getLogger(__name__)

COMMON_FILENAME: Final[str] = "common.toml"
_VARIABLE = re.compile(r"\$\{var\.([A-Za-z_][A-Za-z0-9_]*)\}")


class DeploymentSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, pattern=r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
    location: str | None = None
    tags: dict[str, str] = Field(default_factory=dict[str, str])


class DeclarationDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    deployment: DeploymentSection
    variables: dict[str, Any] = Field(default_factory=dict[str, Any])
    resources: dict[str, dict[str, dict[str, Any]]] = Field(
        default_factory=dict[str, dict[str, dict[str, Any]]]
    )


@dataclass(frozen=True, slots=True)
class Deployment:
    """Declarations of one deployment environment, validated against the catalog."""

    name: str
    environment: str
    declarations: LoadedDeclarations


def load_environment(
    config_dir: Path,
    environment: str,
    *,
    catalog: ResourceCatalog,
) -> Deployment:
    """Read, merge and validate the declarations of ``environment``."""

    document = _parse_document(read_layers(config_dir, environment))
    variables = document.variables
    problems: list[str] = []
    resources: dict[str, dict[str, dict[str, Any]]] = {}
    for resource_type, bodies in document.resources.items():
        for name, body in bodies.items():
            path = f"{resource_type}.{name}"
            substituted = cast(
                dict[str, Any], _substitute(body, variables, path=path, problems=problems)
            )
            if resource_type in catalog:
                _apply_defaults(substituted, document.deployment, catalog, resource_type)
            resources.setdefault(resource_type, {})[name] = substituted
    if problems:
        raise SchemaError("Invalid variables", problems=problems)

    declarations = load(resources, catalog=catalog)
    log.info(
        "Loaded %s declaration(s) for deployment %s (%s)",
        len(declarations),
        document.deployment.name,
        environment,
    )
    return Deployment(
        name=document.deployment.name,
        environment=environment,
        declarations=declarations,
    )


def read_layers(config_dir: Path, environment: str) -> dict[str, Any]:
    """Deep-merge ``common.toml`` and ``<environment>.toml`` from ``config_dir``."""

    environment_file = config_dir / f"{environment}.toml"
    if not environment_file.is_file():
        raise SchemaError(f"No declarations for environment {environment!r}: {environment_file}")
    merged: dict[str, Any] = {}
    for path in (config_dir / COMMON_FILENAME, environment_file):
        if not path.is_file():
            continue
        try:
            with path.open("rb") as handle:
                layer = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:
            raise SchemaError(f"Invalid TOML in {path}: {exc}") from exc
        log.debug("Merging declarations from %s", path)
        merged = deep_merge(merged, layer)
    return merged


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(
                cast(Mapping[str, Any], current), cast(Mapping[str, Any], value)
            )
        else:
            merged[key] = value
    return merged


def _parse_document(raw: Mapping[str, Any]) -> DeclarationDocument:
    try:
        return DeclarationDocument.model_validate(raw)
    except ValidationError as exc:
        problems = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        raise SchemaError("Invalid declaration document", problems=problems) from exc


def _substitute(
    value: object,
    variables: Mapping[str, Any],
    *,
    path: str,
    problems: list[str],
) -> object:
    if isinstance(value, str):
        whole = _VARIABLE.fullmatch(value)
        if whole is not None:
            name = whole.group(1)
            if name not in variables:
                problems.append(f"{path}: undefined variable {name!r}")
                return value
            return variables[name]

        def interpolate(match: re.Match[str]) -> str:
            name = match.group(1)
            if name not in variables:
                problems.append(f"{path}: undefined variable {name!r}")
                return match.group(0)
            return str(variables[name])

        return _VARIABLE.sub(interpolate, value)
    if isinstance(value, Mapping):
        return {
            key: _substitute(item, variables, path=f"{path}.{key}", problems=problems)
            for key, item in cast(Mapping[str, object], value).items()
        }
    if isinstance(value, list):
        return [
            _substitute(item, variables, path=f"{path}[{index}]", problems=problems)
            for index, item in enumerate(cast(list[object], value))
        ]
    return value


def _apply_defaults(
    body: dict[str, Any],
    deployment: DeploymentSection,
    catalog: ResourceCatalog,
    resource_type: str,
) -> None:
    attributes = catalog.get(resource_type).attributes
    if "location" in attributes and deployment.location and "location" not in body:
        body["location"] = deployment.location
    if "tags" in attributes and deployment.tags:
        own = body.get("tags")
        if own is None:
            body["tags"] = dict(deployment.tags)
        elif isinstance(own, Mapping):
            body["tags"] = {**deployment.tags, **cast(Mapping[str, Any], own)}
