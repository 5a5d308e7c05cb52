"""Playbook loader and strict validation."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from statecraft.exceptions import PlaybookValidationError, ValidationError
from statecraft.modules.registry import ModuleRegistry
from statecraft.task.controls import CONTROL_KEYS
from statecraft.variables.renderer import normalize_options


class PlaybookLoader:
    """Loads and validates playbook YAML."""

    SUPPORTED_VERSIONS = {"1"}
    TOP_LEVEL_FIELDS = {"version", "name", "targets", "variables", "renderer", "tasks"}
    TASK_FIELDS = {"name", "targets", "variables"} | set(CONTROL_KEYS)

    def __init__(self, module_registry: Optional[ModuleRegistry] = None):
        """Initialize loader with the registry used to recognise module keys."""
        self.module_registry = module_registry or ModuleRegistry()
        self.errors: List[ValidationError] = []

    def load(self, playbook_path: Union[str, Path]) -> Dict[str, Any]:
        """Load and validate a playbook file."""
        try:
            with open(playbook_path, 'r') as f:
                playbook = yaml.safe_load(f)
        except Exception as e:
            self._add_error(f"Failed to load playbook: {e}")
            self._raise_validation_errors()
        return self.validate(playbook)

    def loads(self, text: str) -> Dict[str, Any]:
        """Load and validate a playbook from a YAML string."""
        try:
            playbook = yaml.safe_load(text)
        except yaml.YAMLError as e:
            self._add_error(f"Failed to parse playbook: {e}")
            self._raise_validation_errors()
        return self.validate(playbook)

    def validate(self, playbook: Any) -> Dict[str, Any]:
        """
        Validate a parsed playbook, collecting every error before raising.

        Raises:
            PlaybookValidationError: If any validation error was found
        """
        self.errors = []
        if not isinstance(playbook, dict):
            self._add_error("Playbook must be a YAML object/dictionary")
            self._raise_validation_errors()

        version = playbook.get('version')
        if version is not None and str(version) not in self.SUPPORTED_VERSIONS:
            self._add_error(f"Unsupported version '{version}'. Supported: {sorted(self.SUPPORTED_VERSIONS)}")

        for key in playbook:
            if key not in self.TOP_LEVEL_FIELDS:
                self._add_error(f"Unknown field '{key}'")

        self._validate_targets(playbook.get('targets'))
        if not isinstance(playbook.get('variables') or {}, dict):
            self._add_error("'variables' must be a dictionary")
        self._validate_renderer(playbook.get('renderer'))

        tasks = playbook.get('tasks')
        if not tasks:
            self._add_error("'tasks' field is required and must not be empty")
        elif not isinstance(tasks, list):
            self._add_error("'tasks' must be a list")
        else:
            default_targets = "all" if playbook.get('targets') else "localhost"
            for i, task in enumerate(tasks):
                self._validate_task(task, i, default_targets)

        if self.errors:
            self._raise_validation_errors()
        return playbook

    def _validate_targets(self, targets: Any):
        if targets is None:
            return
        if not isinstance(targets, dict):
            self._add_error("'targets' must be a dictionary")
            return
        for name, options in targets.items():
            if options is None:
                continue
            if not isinstance(options, dict):
                self._add_error(f"Target '{name}' must be a dictionary")
                continue
            for field in ('variables', 'environment'):
                if field in options and not isinstance(options[field], dict):
                    self._add_error(f"Target '{name}' {field} must be a dictionary")
            groups = options.get('groups')
            if groups is not None and not (
                isinstance(groups, list) and all(isinstance(g, str) for g in groups)
            ):
                self._add_error(f"Target '{name}' groups must be a list of strings")

    def _validate_renderer(self, renderer: Any):
        if renderer is None:
            return
        if not isinstance(renderer, dict):
            self._add_error("'renderer' must be a dictionary")
            return
        try:
            normalize_options(renderer)
        except ValueError as e:
            self._add_error(f"renderer: {e}")

    def _validate_task(self, task: Any, index: int, default_targets: str):
        """Validate one task declaration, filling in defaulted fields."""
        if not isinstance(task, dict):
            self._add_error(f"Task {index} must be a dictionary")
            return
        name = task.get('name') or f"#{index}"

        modules = [k for k in task if self.module_registry.has(k)]
        unknown = [k for k in task if k not in self.TASK_FIELDS and k not in modules]
        for key in unknown:
            self._add_error(f"Task '{name}': unknown field or module '{key}'")
        if not modules and not unknown:
            self._add_error(f"Task '{name}' must declare a module")
        elif len(modules) > 1:
            self._add_error(f"Task '{name}' declares more than one module: {', '.join(modules)}")

        targets = task.get('targets', default_targets)
        if isinstance(targets, str):
            targets = [targets]
        if not isinstance(targets, list) or not all(isinstance(t, str) for t in targets):
            self._add_error(f"Task '{name}': 'targets' must be a string or list of strings")
        else:
            task['targets'] = targets

        if 'variables' in task and not isinstance(task['variables'], dict):
            self._add_error(f"Task '{name}': 'variables' must be a dictionary")

        if 'when' in task and not isinstance(task['when'], (str, bool)):
            self._add_error(f"Task '{name}': 'when' must be an expression string")

        if 'environment' in task and not isinstance(task['environment'], (str, dict)):
            self._add_error(f"Task '{name}': 'environment' must be a dictionary or expression string")

        if 'register' in task and not (
            isinstance(task['register'], str) and task['register'].isidentifier()
        ):
            self._add_error(f"Task '{name}': 'register' must be a variable name")

        loop = task.get('loop')
        if isinstance(loop, dict) and 'for' in loop:
            for key in ('index_var', 'loop_var'):
                if key in loop and not isinstance(loop[key], str):
                    self._add_error(f"Task '{name}': 'loop.{key}' must be a string")
            break_when = loop.get('break_when')
            if break_when is not None and not isinstance(break_when, (str, list)):
                self._add_error(f"Task '{name}': 'loop.break_when' must be a string or list")

        until = task.get('until')
        if isinstance(until, dict) and not until.get('condition'):
            self._add_error(f"Task '{name}': 'until' requires a condition")

    def _add_error(self, message: str, path: str = "", exit_code: int = 2):
        """Add validation error."""
        self.errors.append(ValidationError(message, path, exit_code))

    def _raise_validation_errors(self):
        """Raise PlaybookValidationError with accumulated errors."""
        raise PlaybookValidationError(self.errors)
