"""Statecraft exceptions."""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass


@dataclass
class ValidationError:
    """Single playbook validation error."""
    message: str
    path: str = ""
    exit_code: int = 2


class PlaybookValidationError(Exception):
    """Raised when playbook validation fails.

    This exception is raised by the loader when validation errors occur,
    allowing the CLI to catch it and map to appropriate exit codes.
    """

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors
        self.exit_code = 2

        messages = []
        for error in errors:
            messages.append(f"Validation error: {error.message}")

        super().__init__("\n".join(messages))


class StatecraftError(Exception):
    """Base class for errors raised while running tasks."""
    exit_code = 1


class ModuleValidationError(StatecraftError):
    """Task or module parameters are invalid."""


class PreconditionError(StatecraftError):
    """The target lacks a capability the module requires."""


class ModuleContractError(StatecraftError):
    """A module returned something other than a result mapping."""


class UnknownModuleError(StatecraftError):
    """A task references a module that is not registered."""


class TemplateEvaluationError(StatecraftError):
    """A template or expression could not be rendered."""


class UnknownLookupError(StatecraftError):
    """An expression requested a lookup key that is not registered."""


class TargetResolutionError(StatecraftError):
    """A target pattern or provider type could not be resolved."""


class ModuleFailure(StatecraftError):
    """Raised by ``TaskContext.fail`` to terminate the current task."""


class ExecutionFailedError(StatecraftError):
    """A provider command exited non-zero.

    Attributes:
        result: The raw provider response
    """

    def __init__(self, result: Any, message: str = "Execution failed"):
        self.result = result
        super().__init__(message)

    @property
    def stdout(self) -> Optional[str]:
        return getattr(self.result, "stdout", None)

    @property
    def stderr(self) -> Optional[str]:
        return getattr(self.result, "stderr", None)


class TaskExecutionFailedError(ExecutionFailedError):
    """An execution failure attributed to a named task.

    ``result`` is the failed module result mapping reported for the task.
    """

    def __init__(
        self,
        task: Optional[str],
        result: Dict[str, Any],
        message: str = "Task execution failed"
    ):
        self.task = task
        super().__init__(result, message)

    @property
    def stdout(self) -> Optional[str]:
        return self.result.get("stdout")

    @property
    def stderr(self) -> Optional[str]:
        return self.result.get("stderr")
