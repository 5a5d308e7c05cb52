"""
Tasks: context, control chain and composed execution.
"""

from .context import TaskContext
from .controls import CONTROLS, CONTROL_KEYS, Control, compose
from .task import Task

__all__ = [
    "TaskContext",
    "Task",
    "Control",
    "CONTROLS",
    "CONTROL_KEYS",
    "compose",
]
