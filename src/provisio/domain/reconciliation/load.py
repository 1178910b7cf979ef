"""Resource model loading: raw configuration maps to validated declarations.

Responsibilities of this stage:
- turn ``type -> name -> attributes`` maps into ``ResourceDeclaration`` objects
- parse ``${type.name[.attribute]}`` strings into references
- validate every declaration against its resource type schema
- reject duplicate identities and references to unknown declarations
- rewrite literal values into the canonical form their attribute schema names

All problems found are reported together in one ``SchemaError``. No side effects.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Final

from provisio.domain.errors import SchemaError
from provisio.domain.model import (
    Reference,
    ResourceDeclaration,
    ResourceIdentity,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from provisio.domain.model import AttributeValue, ResourceCatalog

DEPENDS_ON_KEY: Final[str] = "depends_on"
_INTERPOLATION_MARKER: Final[str] = "${"


class LoadedDeclarations:
    """Validated declarations of one run, iterated in identity order."""

    __slots__ = ("_by_identity",)

    def __init__(self, declarations: Iterable[ResourceDeclaration] = ()) -> None:
        ordered = sorted(declarations, key=lambda declaration: declaration.identity)
        self._by_identity: dict[ResourceIdentity, ResourceDeclaration] = {
            declaration.identity: declaration for declaration in ordered
        }

    def __iter__(self) -> Iterator[ResourceDeclaration]:
        return iter(self._by_identity.values())

    def __len__(self) -> int:
        return len(self._by_identity)

    def __contains__(self, identity: object) -> bool:
        return identity in self._by_identity

    def get(self, identity: ResourceIdentity) -> ResourceDeclaration | None:
        return self._by_identity.get(identity)

    @property
    def identities(self) -> tuple[ResourceIdentity, ...]:
        return tuple(self._by_identity)


def load(
    resources: Mapping[str, Mapping[str, Mapping[str, object]]],
    *,
    catalog: ResourceCatalog,
) -> LoadedDeclarations:
    """Build and validate declarations from a ``type -> name -> attributes`` map."""

    problems: list[str] = []
    declarations: list[ResourceDeclaration] = []
    for resource_type in sorted(resources):
        bodies = resources[resource_type]
        if not isinstance(bodies, Mapping):
            problems.append(f"{resource_type}: expected a table of named resources")
            continue
        for name in sorted(bodies):
            body = bodies[name]
            if not isinstance(body, Mapping):
                problems.append(f"{resource_type}.{name}: expected a table of attributes")
                continue
            try:
                declarations.append(declaration_from_mapping(resource_type, name, body))
            except ValueError as exc:
                problems.append(f"{resource_type}.{name}: {exc}")

    if problems:
        raise SchemaError("Invalid declarations", problems=problems)
    return load_declarations(declarations, catalog=catalog)


def load_declarations(
    declarations: Iterable[ResourceDeclaration],
    *,
    catalog: ResourceCatalog,
) -> LoadedDeclarations:
    """Validate already-built declarations against ``catalog``."""

    problems: list[str] = []
    by_identity: dict[ResourceIdentity, ResourceDeclaration] = {}
    for declaration in declarations:
        if declaration.identity in by_identity:
            problems.append(f"{declaration.identity}: declared more than once")
            continue
        by_identity[declaration.identity] = declaration

    for declaration in by_identity.values():
        problems.extend(_schema_problems(declaration, catalog=catalog, known=by_identity))

    if problems:
        raise SchemaError("Invalid declarations", problems=problems)
    return LoadedDeclarations(
        _normalized(declaration, catalog=catalog) for declaration in by_identity.values()
    )


def declaration_from_mapping(
    resource_type: str,
    name: str,
    body: Mapping[str, object],
) -> ResourceDeclaration:
    """Build one declaration; raises ``ValueError`` on malformed input."""

    identity = ResourceIdentity(resource_type, name)
    raw_depends_on = body.get(DEPENDS_ON_KEY, ())
    if isinstance(raw_depends_on, str) or not isinstance(raw_depends_on, list | tuple):
        raise ValueError(f"'{DEPENDS_ON_KEY}' must be a list of 'type.name' strings")
    depends_on: list[ResourceIdentity] = []
    for item in raw_depends_on:
        if not isinstance(item, str):
            raise ValueError(f"'{DEPENDS_ON_KEY}' entries must be strings, got {item!r}")
        depends_on.append(_parse_dependency(item))

    attributes = {
        key: _parse_value(value, path=key) for key, value in body.items() if key != DEPENDS_ON_KEY
    }
    return ResourceDeclaration(
        identity=identity,
        attributes=attributes,
        depends_on=tuple(depends_on),
    )


def _parse_dependency(value: str) -> ResourceIdentity:
    reference = Reference.parse(value)
    if reference is not None:
        return reference.target
    return ResourceIdentity.parse(value)


def _parse_value(value: object, *, path: str) -> AttributeValue:
    if isinstance(value, str):
        reference = Reference.parse(value)
        if reference is not None:
            return reference
        if _INTERPOLATION_MARKER in value:
            raise ValueError(
                f"{path}: references must make up the whole value, got {value!r}"
            )
        return value
    if isinstance(value, Mapping):
        return {
            str(key): _parse_value(item, path=f"{path}.{key}") for key, item in value.items()
        }
    if isinstance(value, list | tuple):
        return [_parse_value(item, path=f"{path}[{index}]") for index, item in enumerate(value)]
    if value is None or isinstance(value, bool | int | float):
        return value
    raise ValueError(f"{path}: unsupported value type {type(value).__name__}")


def _schema_problems(
    declaration: ResourceDeclaration,
    *,
    catalog: ResourceCatalog,
    known: Mapping[ResourceIdentity, ResourceDeclaration],
) -> list[str]:
    identity = declaration.identity
    problems: list[str] = []

    for dependency in declaration.depends_on:
        if dependency not in known:
            problems.append(f"{identity}: depends on unknown resource {dependency}")

    for reference in declaration.references():
        target = known.get(reference.target)
        if target is None:
            problems.append(f"{identity}: reference {reference} targets an unknown resource")
            continue
        if reference.attribute is None or target.type not in catalog:
            continue
        if not catalog.get(target.type).referenceable(reference.attribute):
            problems.append(
                f"{identity}: reference {reference} names an attribute "
                f"{target.type} does not expose"
            )

    if declaration.type not in catalog:
        problems.append(f"{identity}: unknown resource type {declaration.type!r}")
        return problems

    resource_type = catalog.get(declaration.type)
    for name in sorted(resource_type.required_attributes):
        if declaration.attributes.get(name) is None:
            problems.append(f"{identity}: missing required attribute {name!r}")

    for name, value in declaration.attributes.items():
        spec = resource_type.attributes.get(name)
        if spec is None:
            if not resource_type.open_schema:
                problems.append(f"{identity}: unknown attribute {name!r}")
            continue
        if not spec.accepts(value):
            problems.append(
                f"{identity}: attribute {name!r} expects {spec.kind}, "
                f"got {type(value).__name__}"
            )
    return problems


def _normalized(
    declaration: ResourceDeclaration,
    *,
    catalog: ResourceCatalog,
) -> ResourceDeclaration:
    specs = catalog.get(declaration.type).attributes
    attributes = dict(declaration.attributes)
    changed = False
    for name, value in declaration.attributes.items():
        spec = specs.get(name)
        if spec is None or spec.normalize is None:
            continue
        if value is None or isinstance(value, Reference):
            continue
        attributes[name] = spec.normalize(value)
        changed = changed or attributes[name] != value
    return replace(declaration, attributes=attributes) if changed else declaration
