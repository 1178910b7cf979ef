"""Logical resource identities."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final

_SEGMENT: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")


@dataclass(frozen=True, slots=True, order=True)
class ResourceIdentity:
    """``type.name`` pair, unique within one deployment.

    Ordering is lexicographic on ``(type, name)`` so that every iteration over
    identities is reproducible across runs.
    """

    type: str
    name: str

    def __post_init__(self) -> None:
        for label, segment in (("type", self.type), ("name", self.name)):
            if not _SEGMENT.match(segment):
                raise ValueError(f"Invalid resource {label}: {segment!r}")

    def __str__(self) -> str:
        return f"{self.type}.{self.name}"

    @classmethod
    def parse(cls, value: str) -> ResourceIdentity:
        resource_type, separator, name = value.strip().partition(".")
        if not separator:
            raise ValueError(f"Resource identity must look like 'type.name': {value!r}")
        return cls(type=resource_type, name=name)
