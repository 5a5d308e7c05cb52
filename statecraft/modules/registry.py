"""
Module registry.

Maps the module key used in task declarations (``apt_repository``,
``debug``, ...) to its module class.
"""

import logging
from typing import Any, Dict, List, Type

from ..exceptions import UnknownModuleError
from .apt_repository import AptRepositoryModule
from .base import Module
from .command import CommandModule
from .debug import DebugModule
from .set_fact import SetFactModule


logger = logging.getLogger(__name__)


class ModuleRegistry:
    """
    Registry of module classes.

    Module names are unique; registering a second class under an existing
    name is an error.
    """

    def __init__(self):
        """Initialize registry with built-in modules."""
        self._modules: Dict[str, Type[Module]] = {}
        for module_cls in self._load_builtin_modules():
            self.register(module_cls)

    def _load_builtin_modules(self) -> List[Type[Module]]:
        return [
            AptRepositoryModule,
            CommandModule,
            DebugModule,
            SetFactModule,
        ]

    def register(self, module_cls: Type[Module]) -> None:
        """
        Register a module class under its ``name``.

        Raises:
            ValueError: If the class is not a named Module subclass or the
                name is already taken
        """
        if not isinstance(module_cls, type) or not issubclass(module_cls, Module):
            raise ValueError(f"{module_cls!r} is not a Module subclass")
        if not module_cls.name:
            raise ValueError(f"Module class {module_cls.__name__} has no name")
        if module_cls.name in self._modules:
            raise ValueError(f"Module '{module_cls.name}' is already registered")
        self._modules[module_cls.name] = module_cls
        logger.debug(f"Registered module: {module_cls.name}")

    def has(self, name: str) -> bool:
        return name in self._modules

    def list_modules(self) -> List[str]:
        return sorted(self._modules)

    def get(self, name: str, params: Any = None) -> Module:
        """
        Instantiate a module.

        Args:
            name: Registered module name
            params: Rendered module parameters

        Raises:
            UnknownModuleError: If no module has that name
            ModuleValidationError: If the parameters are rejected
        """
        module_cls = self._modules.get(name)
        if module_cls is None:
            raise UnknownModuleError(f"Unknown module '{name}'")
        return module_cls(params)
