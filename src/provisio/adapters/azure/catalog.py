"""Resource types shipped for Azure Resource Manager.

Each ``ArmResourceKind`` pairs a ``ResourceType`` schema with what the provider needs
to talk to ARM: the API version, how to derive the deterministic resource id from
the attributes, and where every attribute lives in the request/response body.

Parents are referenced by id (``resource_group_id = "${resource_group.main}"``), so
child ids are plain string concatenation and a re-run after a crash PUTs the same id.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, cast

from provisio.domain.model import (
    AttributeKind,
    AttributeSpec,
    ResourceCatalog,
    ResourceType,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

type ValueCodec = Callable[[Any], object]
type BodyHook = Callable[[dict[str, Any], Mapping[str, object]], None]


@dataclass(frozen=True, slots=True)
class FieldMapping:
    """Location of one attribute (or output) in an ARM body."""

    attribute: str
    path: tuple[str, ...]
    encode: ValueCodec | None = None
    decode: ValueCodec | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class ArmResourceKind:
    resource_type: ResourceType
    api_version: str
    resource_id: Callable[[str, Mapping[str, object]], str]
    fields: tuple[FieldMapping, ...] = ()
    outputs: tuple[FieldMapping, ...] = ()
    body_hook: BodyHook | None = None
    secret_attributes: frozenset[str] = field(default_factory=frozenset[str])

    @property
    def name(self) -> str:
        return self.resource_type.name


def canonical_location(value: object) -> object:
    """ARM echoes 'West Europe' back as 'westeurope'; compare in that form."""

    if not isinstance(value, str):
        return value
    return value.replace(" ", "").lower()


REQUIRED_NAME: Final = AttributeSpec(kind=AttributeKind.STRING, required=True, immutable=True)
REQUIRED_LOCATION: Final = AttributeSpec(
    kind=AttributeKind.STRING, required=True, immutable=True, normalize=canonical_location
)
TAGS: Final = AttributeSpec(kind=AttributeKind.MAP)
PARENT_ID: Final = AttributeSpec(kind=AttributeKind.STRING, required=True, immutable=True)

_LOCATION = FieldMapping(
    "location", ("location",), encode=canonical_location, decode=canonical_location
)
_TAGS = FieldMapping("tags", ("tags",))
_COMPUTED_IMAGE_KEYS: Final = frozenset({"exactVersion"})


def _child(parent: str, segment: str) -> Callable[[str, Mapping[str, object]], str]:
    def resource_id(subscription_id: str, attributes: Mapping[str, object]) -> str:
        _ = subscription_id
        return f"{attributes[parent]}/{segment}/{attributes['name']}"

    return resource_id


def _resource_group_id(subscription_id: str, attributes: Mapping[str, object]) -> str:
    return f"/subscriptions/{subscription_id}/resourceGroups/{attributes['name']}"


def _ids_to_refs(value: Iterable[str]) -> list[dict[str, str]]:
    return [{"id": item} for item in value]


def _refs_to_ids(value: Iterable[Mapping[str, str]]) -> list[str]:
    return [item["id"] for item in value]


def _subnet_ip_configurations(value: str) -> list[dict[str, object]]:
    return [
        {
            "name": "ipconfig1",
            "properties": {"subnet": {"id": value}, "privateIPAllocationMethod": "Dynamic"},
        }
    ]


def _ip_configuration_subnet(value: list[Mapping[str, Any]]) -> object:
    return value[0]["properties"]["subnet"]["id"] if value else None


def _ip_configuration_address(value: list[Mapping[str, Any]]) -> object:
    return value[0]["properties"].get("privateIPAddress") if value else None


def _static_private_ip(body: dict[str, Any], attributes: Mapping[str, object]) -> None:
    address = attributes.get("private_ip_address")
    if address is None:
        return
    configurations = cast(list[dict[str, Any]], body["properties"]["ipConfigurations"])
    for configuration in configurations:
        configuration["properties"]["privateIPAllocationMethod"] = "Static"
        configuration["properties"]["privateIPAddress"] = address


def _sku(value: str) -> dict[str, str]:
    return {"family": "A", "name": value}


def _ssh_keys(value: str) -> list[dict[str, str]]:
    return [{"keyData": value}]


def _first_ssh_key(value: list[Mapping[str, str]]) -> object:
    return value[0]["keyData"] if value else None


def _image_reference(value: Mapping[str, object]) -> dict[str, object]:
    # exactVersion is resolved by the platform, never declared
    return {
        key: item
        for key, item in value.items()
        if key not in _COMPUTED_IMAGE_KEYS and item is not None
    }


def _linux_os_profile(body: dict[str, Any], attributes: Mapping[str, object]) -> None:
    os_profile = body["properties"]["osProfile"]
    os_profile["computerName"] = attributes["name"]
    os_profile["linuxConfiguration"]["disablePasswordAuthentication"] = True
    for key in os_profile["linuxConfiguration"]["ssh"]["publicKeys"]:
        key["path"] = f"/home/{attributes['admin_username']}/.ssh/authorized_keys"
    _from_image(body)


def _windows_os_profile(body: dict[str, Any], attributes: Mapping[str, object]) -> None:
    # Windows computer names are capped at 15 characters
    body["properties"]["osProfile"]["computerName"] = str(attributes["name"])[:15]
    _from_image(body)


def _from_image(body: dict[str, Any]) -> None:
    storage = body["properties"].setdefault("storageProfile", {})
    storage.setdefault("osDisk", {"createOption": "FromImage"})


RESOURCE_GROUP = ArmResourceKind(
    resource_type=ResourceType(
        name="resource_group",
        attributes={"name": REQUIRED_NAME, "location": REQUIRED_LOCATION, "tags": TAGS},
    ),
    api_version="2021-04-01",
    resource_id=_resource_group_id,
    fields=(_LOCATION, _TAGS),
)

VIRTUAL_NETWORK = ArmResourceKind(
    resource_type=ResourceType(
        name="virtual_network",
        attributes={
            "name": REQUIRED_NAME,
            "resource_group_id": PARENT_ID,
            "location": REQUIRED_LOCATION,
            "address_space": AttributeSpec(kind=AttributeKind.LIST, required=True),
            "dns_servers": AttributeSpec(kind=AttributeKind.LIST),
            "tags": TAGS,
        },
    ),
    api_version="2023-09-01",
    resource_id=_child("resource_group_id", "providers/Microsoft.Network/virtualNetworks"),
    fields=(
        _LOCATION,
        _TAGS,
        FieldMapping("address_space", ("properties", "addressSpace", "addressPrefixes")),
        FieldMapping("dns_servers", ("properties", "dhcpOptions", "dnsServers")),
    ),
)

SUBNET = ArmResourceKind(
    resource_type=ResourceType(
        name="subnet",
        attributes={
            "name": REQUIRED_NAME,
            "virtual_network_id": PARENT_ID,
            "address_prefix": AttributeSpec(
                kind=AttributeKind.STRING, required=True, immutable=True
            ),
        },
    ),
    api_version="2023-09-01",
    resource_id=_child("virtual_network_id", "subnets"),
    fields=(FieldMapping("address_prefix", ("properties", "addressPrefix")),),
)

NETWORK_INTERFACE = ArmResourceKind(
    resource_type=ResourceType(
        name="network_interface",
        attributes={
            "name": REQUIRED_NAME,
            "resource_group_id": PARENT_ID,
            "location": REQUIRED_LOCATION,
            "subnet_id": AttributeSpec(kind=AttributeKind.STRING, required=True),
            "private_ip_address": AttributeSpec(kind=AttributeKind.STRING),
            "tags": TAGS,
        },
        outputs=frozenset({"id", "private_ip_address"}),
    ),
    api_version="2023-09-01",
    resource_id=_child("resource_group_id", "providers/Microsoft.Network/networkInterfaces"),
    fields=(
        _LOCATION,
        _TAGS,
        FieldMapping(
            "subnet_id",
            ("properties", "ipConfigurations"),
            encode=_subnet_ip_configurations,
            decode=_ip_configuration_subnet,
        ),
    ),
    outputs=(
        FieldMapping(
            "private_ip_address",
            ("properties", "ipConfigurations"),
            decode=_ip_configuration_address,
        ),
    ),
    body_hook=_static_private_ip,
)

KEY_VAULT = ArmResourceKind(
    resource_type=ResourceType(
        name="key_vault",
        attributes={
            "name": REQUIRED_NAME,
            "resource_group_id": PARENT_ID,
            "location": REQUIRED_LOCATION,
            "tenant_id": AttributeSpec(kind=AttributeKind.STRING, required=True, immutable=True),
            "sku_name": AttributeSpec(kind=AttributeKind.STRING, required=True),
            "soft_delete_retention_days": AttributeSpec(kind=AttributeKind.INTEGER),
            "enable_rbac_authorization": AttributeSpec(kind=AttributeKind.BOOLEAN),
            "tags": TAGS,
        },
        outputs=frozenset({"id", "vault_uri"}),
    ),
    api_version="2023-07-01",
    resource_id=_child("resource_group_id", "providers/Microsoft.KeyVault/vaults"),
    fields=(
        _LOCATION,
        _TAGS,
        FieldMapping("tenant_id", ("properties", "tenantId")),
        FieldMapping(
            "sku_name",
            ("properties", "sku"),
            encode=_sku,
            decode=lambda value: value.get("name"),
        ),
        FieldMapping(
            "soft_delete_retention_days", ("properties", "softDeleteRetentionInDays")
        ),
        FieldMapping("enable_rbac_authorization", ("properties", "enableRbacAuthorization")),
    ),
    outputs=(FieldMapping("vault_uri", ("properties", "vaultUri")),),
    body_hook=lambda body, _attributes: body["properties"].setdefault("accessPolicies", []),
)


def _virtual_machine_attributes(credential: str) -> dict[str, AttributeSpec]:
    return {
        "name": REQUIRED_NAME,
        "resource_group_id": PARENT_ID,
        "location": REQUIRED_LOCATION,
        "size": AttributeSpec(kind=AttributeKind.STRING, required=True),
        "network_interface_ids": AttributeSpec(kind=AttributeKind.LIST, required=True),
        "admin_username": AttributeSpec(
            kind=AttributeKind.STRING, required=True, immutable=True
        ),
        credential: AttributeSpec(kind=AttributeKind.STRING, required=True, immutable=True),
        "image": AttributeSpec(kind=AttributeKind.MAP, required=True, immutable=True),
        "tags": TAGS,
    }


_VIRTUAL_MACHINE_FIELDS: Final = (
    _LOCATION,
    _TAGS,
    FieldMapping("size", ("properties", "hardwareProfile", "vmSize")),
    FieldMapping(
        "network_interface_ids",
        ("properties", "networkProfile", "networkInterfaces"),
        encode=_ids_to_refs,
        decode=_refs_to_ids,
    ),
    FieldMapping("admin_username", ("properties", "osProfile", "adminUsername")),
    FieldMapping(
        "image", ("properties", "storageProfile", "imageReference"), decode=_image_reference
    ),
)
_VIRTUAL_MACHINE_OUTPUTS: Final = (FieldMapping("vm_id", ("properties", "vmId")),)

LINUX_VIRTUAL_MACHINE = ArmResourceKind(
    resource_type=ResourceType(
        name="linux_virtual_machine",
        attributes=_virtual_machine_attributes("admin_ssh_public_key"),
        outputs=frozenset({"id", "vm_id"}),
    ),
    api_version="2024-03-01",
    resource_id=_child("resource_group_id", "providers/Microsoft.Compute/virtualMachines"),
    fields=(
        *_VIRTUAL_MACHINE_FIELDS,
        FieldMapping(
            "admin_ssh_public_key",
            ("properties", "osProfile", "linuxConfiguration", "ssh", "publicKeys"),
            encode=_ssh_keys,
            decode=_first_ssh_key,
        ),
    ),
    outputs=_VIRTUAL_MACHINE_OUTPUTS,
    body_hook=_linux_os_profile,
)

WINDOWS_VIRTUAL_MACHINE = ArmResourceKind(
    resource_type=ResourceType(
        name="windows_virtual_machine",
        attributes=_virtual_machine_attributes("admin_password"),
        outputs=frozenset({"id", "vm_id"}),
    ),
    api_version="2024-03-01",
    resource_id=_child("resource_group_id", "providers/Microsoft.Compute/virtualMachines"),
    fields=(
        *_VIRTUAL_MACHINE_FIELDS,
        FieldMapping("admin_password", ("properties", "osProfile", "adminPassword")),
    ),
    outputs=_VIRTUAL_MACHINE_OUTPUTS,
    body_hook=_windows_os_profile,
    secret_attributes=frozenset({"admin_password"}),
)

ARM_RESOURCE_KINDS: Final[tuple[ArmResourceKind, ...]] = (
    RESOURCE_GROUP,
    VIRTUAL_NETWORK,
    SUBNET,
    NETWORK_INTERFACE,
    KEY_VAULT,
    LINUX_VIRTUAL_MACHINE,
    WINDOWS_VIRTUAL_MACHINE,
)


def arm_kinds_by_type(
    kinds: Iterable[ArmResourceKind] = ARM_RESOURCE_KINDS,
) -> dict[str, ArmResourceKind]:
    return {kind.name: kind for kind in kinds}


def build_catalog(kinds: Iterable[ArmResourceKind] = ARM_RESOURCE_KINDS) -> ResourceCatalog:
    """Resource catalog of the shipped ARM resource types."""

    return ResourceCatalog(kind.resource_type for kind in kinds)
