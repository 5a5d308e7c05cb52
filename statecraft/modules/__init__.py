"""
Modules: idempotent units of work run by tasks.
"""

from .base import Module, ModuleResult
from .apt_repository import AptRepositoryModule
from .apt_sources import InvalidSource, SourcesList, parse_apt_config
from .command import CommandModule
from .debug import DebugModule
from .registry import ModuleRegistry
from .set_fact import SetFactModule

__all__ = [
    "Module",
    "ModuleResult",
    "ModuleRegistry",
    "AptRepositoryModule",
    "CommandModule",
    "DebugModule",
    "SetFactModule",
    "SourcesList",
    "InvalidSource",
    "parse_apt_config",
]
