"""
Playbook executor.

Runs tasks in declaration order. Each task fans out over its resolved
targets concurrently, bounded by ``forks``; within one target everything
is sequential.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from ..exceptions import TaskExecutionFailedError
from ..modules.registry import ModuleRegistry
from ..providers.registry import ProviderRegistry
from ..security.secrets import SecretsManager
from ..targets import TargetInventory
from ..task.context import TaskContext
from ..task.task import Task
from ..variables.lookups import LookupRegistry
from ..variables.renderer import RendererCache


logger = logging.getLogger(__name__)

DEFAULT_FORKS = 5


class PlaybookExecutor:
    """
    Main playbook execution engine.
    """

    def __init__(
        self,
        playbook: Dict[str, Any],
        variables: Optional[Dict[str, Any]] = None,
        forks: int = DEFAULT_FORKS,
        check_mode: bool = False,
        secrets_manager: Optional[SecretsManager] = None,
        renderer_cache: Optional[RendererCache] = None,
        module_registry: Optional[ModuleRegistry] = None,
        provider_registry: Optional[ProviderRegistry] = None
    ):
        """
        Initialize playbook executor.

        Args:
            playbook: Validated playbook dictionary (see PlaybookLoader)
            variables: Command-line variables, overriding playbook and target variables
            forks: Maximum concurrent target executions per task
            check_mode: Ask modules to report changes without applying them
            secrets_manager: Collects values to mask in logs
            renderer_cache: Shared renderer instances
            module_registry: Registered modules
            provider_registry: Provider types and per-target providers
        """
        self.playbook = playbook
        self.forks = max(int(forks), 1)
        self.check_mode = check_mode
        self.secrets_manager = secrets_manager or SecretsManager()
        self.renderer_cache = renderer_cache or RendererCache(LookupRegistry(self.secrets_manager))
        self.module_registry = module_registry or ModuleRegistry()
        self.inventory = TargetInventory(playbook.get("targets"))
        self.provider_registry = provider_registry or ProviderRegistry(self.inventory)
        self.renderer = self.renderer_cache.get(playbook.get("renderer"))

        self.tasks: List[Task] = [
            Task.from_dict(data, self.module_registry) for data in playbook.get("tasks") or []
        ]
        self.cli_variables = dict(variables or {})
        self.target_variables: Dict[str, Dict[str, Any]] = {}
        self.results: Dict[str, Dict[str, Any]] = {}
        self.summary: Dict[str, Any] = {}

    def variables_for(self, target: str) -> Dict[str, Any]:
        """Run variables for a target: playbook < target < command line."""
        if target not in self.target_variables:
            self.target_variables[target] = {
                **(self.playbook.get("variables") or {}),
                **(self.inventory.get(target).get("variables") or {}),
                **self.cli_variables,
            }
        return self.target_variables[target]

    async def execute(self) -> Dict[str, Any]:
        """
        Execute the playbook.

        Returns:
            Run summary ``{"status", "tasks", "variables"}``

        Raises:
            TaskExecutionFailedError: For the first failed task-target,
                after sibling targets of that task have finished
        """
        status = "failed"
        try:
            for task in self.tasks:
                targets = self.inventory.resolve_all(task.targets)
                logger.info(f"Task '{task.name}' on {', '.join(targets)}")
                await self._run_task(task, targets)
            status = "completed"
        finally:
            await self.provider_registry.shutdown()
            self.summary = {
                "status": status,
                "tasks": self.results,
                "variables": self.target_variables,
            }
            logger.info(f"Playbook {status}: {len(self.results)} task(s) run")
        return self.summary

    async def _run_task(self, task: Task, targets: List[str]) -> None:
        semaphore = asyncio.Semaphore(self.forks)
        outcomes = await asyncio.gather(
            *(self._run_target(task, target, semaphore) for target in targets),
            return_exceptions=True
        )

        task_results = self.results.setdefault(task.name, {})
        first_error: Optional[BaseException] = None
        for target, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, TaskExecutionFailedError):
                    task_results[target] = outcome.result
                else:
                    task_results[target] = {"changed": False, "failed": True, "msg": str(outcome)}
                logger.error(f"Task '{task.name}' failed on {target}: {outcome}")
                if first_error is None:
                    first_error = outcome
            else:
                task_results[target] = outcome
        if first_error is not None:
            raise first_error

    async def _run_target(self, task: Task, target: str, semaphore: asyncio.Semaphore) -> Dict[str, Any]:
        async with semaphore:
            provider = self.provider_registry.for_target(target)
            await provider.ensure_ready()

            run_variables = self.variables_for(target)
            ctx = TaskContext(
                provider=provider,
                renderer=self.renderer,
                variables={**run_variables, **task.variables},
                task_name=task.name,
                target=target,
                check_mode=self.check_mode,
            )
            try:
                return await task.run(ctx)
            finally:
                run_variables.update(ctx.exported)
