"""Pydantic models describing Azure Resource Manager envelopes."""

from __future__ import annotations

from typing import Final

from pydantic import BaseModel, ConfigDict, Field

SUCCEEDED: Final[str] = "Succeeded"
TERMINAL_FAILURES: Final[frozenset[str]] = frozenset({"Failed", "Canceled"})


class ArmBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ArmErrorDetail(ArmBaseModel):
    code: str = "Unknown"
    message: str = ""
    details: list[ArmErrorDetail] = Field(default_factory=list["ArmErrorDetail"])


class ArmErrorResponse(ArmBaseModel):
    error: ArmErrorDetail

    def describe(self) -> str:
        text = f"{self.error.code}: {self.error.message}"
        for detail in self.error.details:
            text += f"; {detail.code}: {detail.message}"
        return text


class ArmProperties(ArmBaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    provisioning_state: str | None = Field(default=None, alias="provisioningState")


class ArmResource(ArmBaseModel):
    """Generic ARM resource envelope; type specific fields stay in the raw payload."""

    id: str
    name: str | None = None
    type: str | None = None
    location: str | None = None
    properties: ArmProperties = Field(default_factory=ArmProperties)

    @property
    def provisioning_state(self) -> str:
        # resources without a provisioning state (resource groups on some API versions)
        # are complete as soon as the PUT returns
        return self.properties.provisioning_state or SUCCEEDED

    @property
    def settled(self) -> bool:
        state = self.provisioning_state
        return state == SUCCEEDED or state in TERMINAL_FAILURES

