"""
Task model.

A task binds one module invocation to a set of targets and a control
configuration. ``Task.execute`` is the composed callable: the module call
wrapped by every enabled control.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..exceptions import ExecutionFailedError, ModuleValidationError, TaskExecutionFailedError
from ..modules.registry import ModuleRegistry
from .context import TaskContext
from .controls import CONTROL_KEYS, ExecuteFn, compose


logger = logging.getLogger(__name__)


class Task:
    """
    One declared unit of work.

    Attributes:
        name: Task name
        module: Registered module name
        params: Raw module parameters, rendered on every call
        targets: Target patterns
        controls: Control configuration (``when``, ``loop``, ``until``, ``register``)
        variables: Task-level variables
    """

    def __init__(
        self,
        name: str,
        module: str,
        params: Any = None,
        targets: Optional[List[str]] = None,
        controls: Optional[Dict[str, Any]] = None,
        variables: Optional[Dict[str, Any]] = None,
        registry: Optional[ModuleRegistry] = None
    ):
        self.name = name
        self.module = module
        self.params = params
        self.targets = list(targets or ["localhost"])
        self.controls = {k: v for k, v in (controls or {}).items() if k in CONTROL_KEYS}
        self.variables = dict(variables or {})
        self.registry = registry or ModuleRegistry()
        self.execute: ExecuteFn = compose(self.run_module, self.controls)

    async def run_module(self, ctx: TaskContext) -> Dict[str, Any]:
        """
        Render parameters and run the module lifecycle once.

        Raises:
            TaskExecutionFailedError: If rendering, validation or the module
                itself raises
        """
        start = datetime.now(timezone.utc)
        try:
            params = await ctx.render(self.params)
            module = self.registry.get(self.module, params)
            result = await module.run(ctx)
        except Exception as e:
            failed = {"changed": False, "failed": True, "msg": str(e)}
            if isinstance(e, ExecutionFailedError) and not isinstance(e, TaskExecutionFailedError):
                failed["stdout"] = e.stdout
                failed["stderr"] = e.stderr
            raise TaskExecutionFailedError(
                self.name, failed, f"Task '{self.name}' failed: {e}"
            ) from e

        end = datetime.now(timezone.utc)
        result.setdefault("changed", False)
        result.setdefault("failed", False)
        result["start"] = start.isoformat()
        result["end"] = end.isoformat()
        result["delta"] = str(end - start)
        return result

    async def run(self, ctx: TaskContext) -> Dict[str, Any]:
        """
        Run the composed task against one context.

        Raises:
            TaskExecutionFailedError: If the final result is marked failed
        """
        ctx.logger.debug(f"Task '{self.name}' starting on {ctx.target}")
        result = await self.execute(ctx)
        if result.get("failed"):
            raise TaskExecutionFailedError(
                self.name, result, f"Task '{self.name}' failed: {result.get('msg', 'module reported failure')}"
            )
        ctx.logger.info(
            f"Task finished: {self.name} on {ctx.target} "
            f"(changed={bool(result.get('changed'))}, skipped={bool(result.get('skipped'))})"
        )
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any], registry: Optional[ModuleRegistry] = None) -> "Task":
        """
        Build a task from its declaration.

        The declaration holds exactly one key naming a registered module; the
        loader has already validated this.
        """
        registry = registry or ModuleRegistry()
        module_keys = [k for k in data if registry.has(k)]
        if len(module_keys) != 1:
            raise ModuleValidationError(
                f"Task '{data.get('name', '')}' must declare exactly one module, found {len(module_keys)}"
            )
        module = module_keys[0]
        targets = data.get("targets")
        if isinstance(targets, str):
            targets = [targets]
        return cls(
            name=data.get("name") or module,
            module=module,
            params=data[module],
            targets=targets,
            controls={k: data[k] for k in CONTROL_KEYS if k in data},
            variables=data.get("variables"),
            registry=registry,
        )
