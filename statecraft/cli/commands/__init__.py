"""CLI command handlers."""

from .run import run_playbook

__all__ = ['run_playbook']
