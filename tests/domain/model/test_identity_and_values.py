from __future__ import annotations

import pytest

from provisio.domain.model import (
    UNKNOWN,
    AttributeKind,
    AttributeSpec,
    Reference,
    ResourceIdentity,
    Unknown,
    contains_unknown,
    iter_references,
    plain,
    resolve_value,
    values_equal,
)


def test_identity_orders_by_type_then_name() -> None:
    identities = [
        ResourceIdentity("vm", "a"),
        ResourceIdentity("network", "z"),
        ResourceIdentity("network", "b"),
    ]

    assert [str(identity) for identity in sorted(identities)] == [
        "network.b",
        "network.z",
        "vm.a",
    ]


@pytest.mark.parametrize("value", ["network", "network.", ".main", "net work.main"])
def test_identity_parse_rejects_malformed_values(value: str) -> None:
    with pytest.raises(ValueError, match="identity|Invalid resource"):
        ResourceIdentity.parse(value)


def test_reference_parse_with_and_without_attribute() -> None:
    bare = Reference.parse("${subnet.app}")
    output = Reference.parse("${ vm.web.private_ip }")

    assert bare == Reference(ResourceIdentity("subnet", "app"))
    assert output == Reference(ResourceIdentity("vm", "web"), "private_ip")
    assert str(output) == "${vm.web.private_ip}"
    assert Reference.parse("plain string") is None
    assert Reference.parse("prefix-${vm.web}") is None


def test_unknown_is_a_singleton_and_never_equal() -> None:
    assert Unknown() is UNKNOWN
    assert repr(UNKNOWN) == "(known after apply)"
    assert not values_equal(UNKNOWN, UNKNOWN)
    assert contains_unknown({"nested": [1, UNKNOWN]})


def test_resolve_value_walks_nested_structures() -> None:
    network = Reference(ResourceIdentity("network", "main"))
    value = {"ids": [network, "literal"], "single": network}

    resolved = resolve_value(value, lambda reference: f"id-of-{reference.target}")

    assert resolved == {"ids": ["id-of-network.main", "literal"], "single": "id-of-network.main"}
    assert list(iter_references(value)) == [network, network]


def test_values_equal_treats_tuples_like_lists() -> None:
    assert values_equal(("a", "b"), ["a", "b"])
    assert values_equal({"k": ("v",)}, {"k": ["v"]})
    assert not values_equal({"k": 1}, {"k": 2})
    assert plain(Reference(ResourceIdentity("vm", "web"))) == {"$ref": "${vm.web}"}


@pytest.mark.parametrize(
    ("kind", "accepted", "rejected"),
    [
        (AttributeKind.STRING, "text", 1),
        (AttributeKind.INTEGER, 3, True),
        (AttributeKind.NUMBER, 2.5, "2.5"),
        (AttributeKind.BOOLEAN, False, 0),
        (AttributeKind.LIST, ["a"], {"a": 1}),
        (AttributeKind.MAP, {"a": 1}, ["a"]),
    ],
)
def test_attribute_spec_accepts_matching_kinds(
    kind: AttributeKind, accepted: object, rejected: object
) -> None:
    spec = AttributeSpec(kind=kind)

    assert spec.accepts(accepted)
    assert not spec.accepts(rejected)
    assert spec.accepts(None)
    assert spec.accepts(Reference(ResourceIdentity("network", "main")))
