"""Playbook execution."""

from .executor import PlaybookExecutor

__all__ = ["PlaybookExecutor"]
