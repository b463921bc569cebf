"""
Retry policies.

A policy decides, after a failed attempt, whether another attempt follows and
how long to wait first. The executor consults the execution-time governor
before honoring that wait.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from .exceptions import is_transient_error

logger = logging.getLogger(__name__)


class RetryConfig:
    """Retry defaults."""

    MAX_ATTEMPTS = 4
    INITIAL_BACKOFF = 1.0  # seconds
    MAX_BACKOFF = 30.0  # seconds
    BACKOFF_MULTIPLIER = 2.0  # exponential backoff


class RetryPolicy(ABC):
    """Base class for retry policies."""

    def __init__(self, max_attempts: int = RetryConfig.MAX_ATTEMPTS):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts

    def evaluate(self, attempt: int, error: BaseException) -> Optional[float]:
        """
        Decide whether to retry after ``attempt`` failed with ``error``.

        Args:
            attempt: 1-based number of the attempt that failed
            error: The exception it raised

        Returns:
            Delay in seconds before the next attempt, or None to stop
        """
        if not is_transient_error(error):
            return None
        if attempt >= self.max_attempts:
            return None
        return self.backoff(attempt)

    @abstractmethod
    def backoff(self, attempt: int) -> float:
        """Delay after the given failed attempt."""


class ExponentialRetryPolicy(RetryPolicy):
    """Exponential backoff capped at ``max_backoff``."""

    def __init__(
        self,
        max_attempts: int = RetryConfig.MAX_ATTEMPTS,
        initial_backoff: float = RetryConfig.INITIAL_BACKOFF,
        max_backoff: float = RetryConfig.MAX_BACKOFF,
        multiplier: float = RetryConfig.BACKOFF_MULTIPLIER,
    ):
        super().__init__(max_attempts)
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.multiplier = multiplier

    def backoff(self, attempt: int) -> float:
        return min(self.initial_backoff * (self.multiplier ** (attempt - 1)), self.max_backoff)


class LinearRetryPolicy(RetryPolicy):
    """Fixed delay between attempts."""

    def __init__(self, max_attempts: int = RetryConfig.MAX_ATTEMPTS, delay: float = RetryConfig.INITIAL_BACKOFF):
        super().__init__(max_attempts)
        self.delay = delay

    def backoff(self, attempt: int) -> float:
        return self.delay


class NoRetryPolicy(RetryPolicy):
    """Single attempt, never retried."""

    def __init__(self):
        super().__init__(max_attempts=1)

    def backoff(self, attempt: int) -> float:
        return 0.0
