"""
Execution providers.

Provides the provider contract, the local provider and the provider registry.
"""

from .types import ProviderResponse, OsInfo
from .base import Provider
from .local import LocalProvider
from .registry import ProviderRegistry


__all__ = [
    "ProviderResponse",
    "OsInfo",
    "Provider",
    "LocalProvider",
    "ProviderRegistry",
]
