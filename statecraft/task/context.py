"""
Per task-target execution context.
"""

import logging
from typing import Any, Dict, Optional

from ..exceptions import ModuleFailure
from ..providers.base import Provider
from ..providers.types import ProviderResponse
from ..variables.renderer import Renderer


logger = logging.getLogger(__name__)


class TaskContext:
    """
    Variables, logger and bound provider for one task running on one target.

    A context is owned by exactly one execution. Variables set here stay
    local to the task unless exported.
    """

    def __init__(
        self,
        provider: Provider,
        renderer: Renderer,
        variables: Optional[Dict[str, Any]] = None,
        task_name: str = "",
        target: Optional[str] = None,
        check_mode: bool = False
    ):
        self.provider = provider
        self.renderer = renderer
        self.variables: Dict[str, Any] = dict(variables or {})
        self.task_name = task_name
        self.target = target if target is not None else provider.name
        self.check_mode = check_mode
        self.exported: Dict[str, Any] = {}
        self.environment: Dict[str, str] = {}
        self.logger = logging.LoggerAdapter(
            logger, {"task": task_name, "target": self.target}
        )

    async def exec(self, command: str, **options: Any) -> ProviderResponse:
        self.logger.debug(f"exec: {command}")
        return await self.provider.exec(command, **self._with_environment(options))

    async def exec_safe(self, command: str, **options: Any) -> ProviderResponse:
        self.logger.debug(f"exec_safe: {command}")
        return await self.provider.exec_safe(command, **self._with_environment(options))

    def _with_environment(self, options: Dict[str, Any]) -> Dict[str, Any]:
        """Layer the task environment between the provider's and the call's."""
        if not self.environment:
            return options
        merged = dict(options)
        merged["env"] = {**self.environment, **(options.get("env") or {})}
        return merged

    def warn(self, message: str) -> None:
        self.logger.warning(f"[{self.task_name}] {message}")

    def fail(self, message: str) -> None:
        """Terminate the current task with a reported failure."""
        raise ModuleFailure(message)

    def export(self, name: str, value: Any) -> None:
        """Set a variable and make it visible to later tasks on this target."""
        self.variables[name] = value
        self.exported[name] = value

    async def evaluate(self, source: Any) -> Any:
        return await self.renderer.evaluate(source, self.variables, self)

    async def evaluate_expression(self, expression: str) -> Any:
        return await self.renderer.evaluate_expression(expression, self.variables, self)

    async def render(self, value: Any) -> Any:
        return await self.renderer.render_params(value, self.variables, self)
