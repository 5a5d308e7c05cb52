"""
Provider registry for execution providers.

Maps provider type names (``local``, ...) to provider classes and keeps one
provider instance per target for the lifetime of a run.
"""

import logging
from typing import Dict, List, Optional, Type

from ..exceptions import TargetResolutionError
from ..targets import TargetInventory
from .base import Provider
from .local import LocalProvider


logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Registry of provider types and per-target provider instances.

    Provider implementations other than the built-in local one (for example
    an SSH session provider) are registered by the embedding application.
    """

    def __init__(self, inventory: Optional[TargetInventory] = None):
        """Initialize registry with built-in provider types."""
        self.inventory = inventory or TargetInventory()
        self._types: Dict[str, Type[Provider]] = self._load_builtin_types()
        self._instances: Dict[str, Provider] = {}

    def _load_builtin_types(self) -> Dict[str, Type[Provider]]:
        return {
            LocalProvider.type_name: LocalProvider,
        }

    def register(self, type_name: str, provider_cls: Type[Provider]) -> None:
        """
        Register a provider type.

        Raises:
            ValueError: If the class is not a Provider subclass
        """
        if not isinstance(provider_cls, type) or not issubclass(provider_cls, Provider):
            raise ValueError(f"Provider type '{type_name}' must subclass Provider")
        self._types[type_name] = provider_cls
        logger.debug(f"Registered provider type: {type_name}")

    def exists(self, type_name: str) -> bool:
        return type_name in self._types

    def list_types(self) -> List[str]:
        return sorted(self._types)

    def for_target(self, target: str) -> Provider:
        """
        Get (or create) the provider bound to a target.

        Raises:
            TargetResolutionError: If the target or its provider type is unknown
        """
        if target in self._instances:
            return self._instances[target]

        options = self.inventory.get(target)
        type_name = options.get("provider", "local")
        provider_cls = self._types.get(type_name)
        if provider_cls is None:
            raise TargetResolutionError(
                f"Unknown provider type '{type_name}' for target '{target}'"
            )

        provider = provider_cls(target, options)
        self._instances[target] = provider
        return provider

    async def shutdown(self) -> None:
        """Shut down every provider created during the run."""
        for provider in self._instances.values():
            await provider.safe_shutdown()
        self._instances.clear()
