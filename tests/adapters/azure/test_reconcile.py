"""Full reconciliation runs against a stateful ARM stand-in."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from provisio.adapters.azure import build_catalog
from provisio.domain.errors import StoreError
from provisio.domain.model import ChangeAction, ResourceIdentity
from provisio.domain.reconciliation import EntryRetryPolicy, ReconciliationEngine, load
from tests.support.arm import RG_ID, ArmEmulator
from tests.support.state import InMemoryStateStore

if TYPE_CHECKING:
    from provisio.adapters.azure import AzureResourceProvider
    from provisio.domain.reconciliation import LoadedDeclarations
    from tests.support.arm import ArmRecorder

VNET_ID = f"{RG_ID}/providers/Microsoft.Network/virtualNetworks/vnet-dev"
SUBNET_ID = f"{VNET_ID}/subnets/snet-app"
NIC_ID = f"{RG_ID}/providers/Microsoft.Network/networkInterfaces/nic-web"
VM_ID = f"{RG_ID}/providers/Microsoft.Compute/virtualMachines/vm-web"


def _declarations() -> LoadedDeclarations:
    return load(
        {
            "resource_group": {
                "main": {"name": "rg-dev", "location": "West Europe", "tags": {"env": "dev"}}
            },
            "virtual_network": {
                "main": {
                    "name": "vnet-dev",
                    "resource_group_id": "${resource_group.main}",
                    "location": "West Europe",
                    "address_space": ["10.0.0.0/16"],
                }
            },
            "subnet": {
                "app": {
                    "name": "snet-app",
                    "virtual_network_id": "${virtual_network.main}",
                    "address_prefix": "10.0.1.0/24",
                }
            },
            "network_interface": {
                "web": {
                    "name": "nic-web",
                    "resource_group_id": "${resource_group.main}",
                    "location": "West Europe",
                    "subnet_id": "${subnet.app}",
                }
            },
            "linux_virtual_machine": {
                "web": {
                    "name": "vm-web",
                    "resource_group_id": "${resource_group.main}",
                    "location": "West Europe",
                    "size": "Standard_B2s",
                    "network_interface_ids": ["${network_interface.web}"],
                    "admin_username": "azureuser",
                    "admin_ssh_public_key": "ssh-ed25519 AAAA",
                    "image": {
                        "publisher": "Canonical",
                        "offer": "ubuntu-24_04-lts",
                        "sku": "server",
                        "version": "latest",
                    },
                }
            },
        },
        catalog=build_catalog(),
    )


@pytest.fixture
def emulator(arm: ArmRecorder) -> ArmEmulator:
    emulator = ArmEmulator()
    arm.handler = emulator
    return emulator


@pytest.fixture
def engine(arm_provider: AzureResourceProvider) -> ReconciliationEngine:
    return ReconciliationEngine(
        catalog=build_catalog(),
        store=InMemoryStateStore("shop-dev"),
        provider=arm_provider,
        retry=EntryRetryPolicy(backoff_factor=0.0, backoff_jitter=0.0),
        lock_owner="tester",
    )


def test_apply_then_plan_against_arm_reports_no_changes(
    engine: ReconciliationEngine, emulator: ArmEmulator, arm: ArmRecorder
) -> None:
    first = engine.apply(_declarations())

    assert not first.partial
    assert [str(o.entry.identity) for o in first.result.succeeded] == [
        "resource_group.main",
        "virtual_network.main",
        "subnet.app",
        "network_interface.web",
        "linux_virtual_machine.web",
    ]
    assert set(emulator.resources) == {RG_ID, VNET_ID, SUBNET_ID, NIC_ID, VM_ID}
    assert arm.body(0)["location"] == "westeurope"
    vm = emulator.resources[VM_ID]["properties"]
    assert vm["storageProfile"]["imageReference"]["exactVersion"] == "24.04.202409120"

    requests = len(arm.requests)
    replan = engine.plan(_declarations())
    second = engine.apply(_declarations())

    assert not replan.has_changes
    assert not second.has_changes
    assert [request.method for request in arm.requests[requests:]] == ["GET"] * 10


def test_drift_on_arm_is_updated_in_place(
    engine: ReconciliationEngine, emulator: ArmEmulator, arm: ArmRecorder
) -> None:
    engine.apply(_declarations())
    emulator.resources[RG_ID]["tags"] = {"env": "changed"}

    report = engine.apply(_declarations())

    assert [(o.entry.action, str(o.entry.identity)) for o in report.result.succeeded] == [
        (ChangeAction.UPDATE, "resource_group.main")
    ]
    assert emulator.resources[RG_ID]["tags"] == {"env": "dev"}
    assert emulator.resources[RG_ID]["location"] == "westeurope"
    assert not engine.plan(_declarations()).has_changes
    assert [request.method for request in arm.requests].count("DELETE") == 0


def test_destroy_empties_arm_and_state(
    engine: ReconciliationEngine, emulator: ArmEmulator, arm: ArmRecorder
) -> None:
    engine.apply(_declarations())

    report = engine.destroy()

    assert not report.partial
    assert emulator.resources == {}
    assert engine.store.records() == ()
    deletes = [request.url.path for request in arm.requests if request.method == "DELETE"]
    assert deletes == [VM_ID, NIC_ID, SUBNET_ID, VNET_ID, RG_ID]


def test_create_interrupted_before_its_state_write_converges_on_rerun(
    arm_provider: AzureResourceProvider, emulator: ArmEmulator, arm: ArmRecorder
) -> None:
    store = InMemoryStateStore("shop-dev", fail_writes_after=2)
    engine = ReconciliationEngine(
        catalog=build_catalog(),
        store=store,
        provider=arm_provider,
        retry=EntryRetryPolicy(backoff_factor=0.0, backoff_jitter=0.0),
        lock_owner="tester",
    )

    with pytest.raises(StoreError):
        engine.apply(_declarations())
    assert set(emulator.resources) == {RG_ID, VNET_ID}
    assert [intent.identity for intent in store.pending_intents()] == [
        ResourceIdentity("virtual_network", "main")
    ]

    store.fail_writes_after = None
    report = engine.apply(_declarations())

    assert not report.partial
    assert set(emulator.resources) == {RG_ID, VNET_ID, SUBNET_ID, NIC_ID, VM_ID}
    puts = [request.url.path for request in arm.requests if request.method == "PUT"]
    assert puts.count(VNET_ID) == 2
    assert store.pending_intents() == ()
