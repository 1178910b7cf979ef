from __future__ import annotations

from .provider import ProviderResult, ResourceProvider
from .state import StateStore

__all__ = ["ProviderResult", "ResourceProvider", "StateStore"]
