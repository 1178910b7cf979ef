"""Azure Resource Manager adapter."""

from __future__ import annotations

from .catalog import (
    ARM_RESOURCE_KINDS,
    ArmResourceKind,
    FieldMapping,
    arm_kinds_by_type,
    build_catalog,
)
from .client import ArmAPIError, AzureResourceProvider

__all__ = [
    "ARM_RESOURCE_KINDS",
    "ArmAPIError",
    "ArmResourceKind",
    "AzureResourceProvider",
    "FieldMapping",
    "arm_kinds_by_type",
    "build_catalog",
]
