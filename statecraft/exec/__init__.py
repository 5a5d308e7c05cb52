"""
Execution helpers.
Handles retry and backoff of provider commands.
"""

from .retry import RetryPolicy

__all__ = [
    "RetryPolicy",
]
