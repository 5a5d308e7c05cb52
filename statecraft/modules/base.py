"""
Module contract and lifecycle.

Every module runs the same phases against a task context:

    check -> initialize -> execute -> cleanup

``check`` and ``initialize`` must not mutate the target. If ``execute``
raises, the module's ``compensate`` hook gets a chance to undo partial
changes before the error propagates. ``cleanup`` always runs and its own
failures never replace the original error.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..exceptions import ModuleContractError, ModuleValidationError, PreconditionError


logger = logging.getLogger(__name__)

ModuleResult = Dict[str, Any]


class Module(ABC):
    """
    Base class for all modules.

    Subclasses set ``name`` (the key used in task declarations) and may
    narrow ``constraints``:

        {"platform": {"linux": True}}
        {"platform": {"linux": {"arch": ["x86_64"], "require_root": True,
                                "binaries": ["apt-get"]}}}
        {"platform": {"any": True}}
    """

    name: str = ""
    constraints: Dict[str, Any] = {"platform": {"any": True}}

    def __init__(self, params: Any = None):
        self.params: Dict[str, Any] = self.validate_params(params if params is not None else {})

    def validate_params(self, params: Any) -> Dict[str, Any]:
        """Apply defaults and reject malformed parameters. Override as needed."""
        if not isinstance(params, dict):
            raise ModuleValidationError(
                f"Parameters for module '{self.name}' must be a mapping"
            )
        return dict(params)

    async def check(self, ctx) -> None:
        """Validate parameters and target capabilities without side effects."""

    async def initialize(self, ctx) -> None:
        """Load working state from the target."""

    @abstractmethod
    async def execute(self, ctx) -> ModuleResult:
        """Apply the change and return the module result."""

    async def cleanup(self, ctx) -> None:
        """Release working state."""

    async def compensate(self, ctx, error: BaseException) -> None:
        """Undo partial changes after ``execute`` failed."""

    async def run(self, ctx) -> ModuleResult:
        """
        Run the full lifecycle.

        Returns:
            The result mapping produced by ``execute``

        Raises:
            ModuleContractError: If ``execute`` returns something other than a dict
        """
        try:
            await self.check_constraints(ctx)
            await self.check(ctx)
            await self.initialize(ctx)
            try:
                result = await self.execute(ctx)
            except Exception as e:
                await self._compensate_quietly(ctx, e)
                raise
            if not isinstance(result, dict):
                raise ModuleContractError(
                    f"Module '{self.name}' returned {type(result).__name__}, expected a result mapping"
                )
            return result
        finally:
            try:
                await self.cleanup(ctx)
            except Exception as e:
                ctx.logger.debug(f"Module '{self.name}' cleanup failed: {e}")

    async def _compensate_quietly(self, ctx, error: BaseException) -> None:
        try:
            await self.compensate(ctx, error)
        except Exception as e:
            ctx.logger.warning(f"Module '{self.name}' compensation failed: {e}")

    async def check_constraints(self, ctx) -> None:
        """
        Verify the target matches the declared platform constraints.

        Raises:
            PreconditionError: If the platform, architecture, privileges or
                required binaries do not match
        """
        platforms = (self.constraints or {}).get("platform") or {"any": True}
        provider = ctx.provider
        if "local" in platforms and provider.type_name == "local":
            rules = platforms["local"]
        elif provider.os.family in platforms:
            rules = platforms[provider.os.family]
        elif "any" in platforms:
            rules = platforms["any"]
        else:
            raise PreconditionError(
                f"Module '{self.name}' does not support platform '{provider.os.family}' "
                f"(supported: {', '.join(sorted(platforms))})"
            )

        if rules is True:
            return
        if rules is False:
            raise PreconditionError(
                f"Module '{self.name}' is disabled on platform '{provider.os.family}'"
            )

        arch: List[str] = rules.get("arch") or []
        if arch and provider.os.arch not in arch:
            raise PreconditionError(
                f"Module '{self.name}' does not support architecture '{provider.os.arch}'"
            )

        if rules.get("require_root"):
            response = await ctx.exec_safe("id -u")
            if response.stdout.strip() != "0":
                raise PreconditionError(f"Module '{self.name}' requires root privileges")

        for binary in rules.get("binaries") or []:
            response = await ctx.exec_safe(f"command -v {binary} >/dev/null 2>&1")
            if response.code != 0:
                raise PreconditionError(
                    f"Module '{self.name}' requires '{binary}' on the target"
                )
