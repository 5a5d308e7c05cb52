"""
Retry policy helpers.
Exponential backoff with a shared jitter, used by the package cache refresh.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Optional, Set


@dataclass
class RetryPolicy:
    """
    Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including the first)
        max_delay: Upper bound in seconds for the exponential delay
        jitter: Random fraction added to every delay; drawn once per policy
        retryable_codes: Exit codes that trigger retries (None = any non-zero)
    """
    max_attempts: int = 1
    max_delay: float = 12.0
    jitter: float = field(default_factory=random.random)
    retryable_codes: Optional[Set[int]] = None

    @classmethod
    def for_cache_update(cls, retries: int = 5, max_delay: float = 12.0) -> 'RetryPolicy':
        """Create the policy for package cache refreshes."""
        return cls(max_attempts=max(int(retries), 1), max_delay=float(max_delay))

    def delay_for(self, attempt: int) -> float:
        """
        Delay in seconds before the attempt following ``attempt`` (0-based).

        ``min(2**attempt + jitter, max_delay + jitter)``
        """
        return min(2 ** attempt + self.jitter, self.max_delay + self.jitter)

    def should_retry(self, exit_code: int, attempt: int) -> bool:
        """
        Determine if a retry should be attempted.

        Args:
            exit_code: Exit code from the last execution
            attempt: Current attempt number (0-based)

        Returns:
            True if should retry, False otherwise
        """
        if exit_code == 0:
            return False

        if attempt + 1 >= self.max_attempts:
            return False

        if self.retryable_codes is None:
            return True
        return exit_code in self.retryable_codes

    async def wait(self, attempt: int) -> None:
        """Wait for the backoff delay after a failed attempt."""
        delay = self.delay_for(attempt)
        if delay > 0:
            await asyncio.sleep(delay)
