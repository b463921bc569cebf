"""
Execution-time governor.

Bounds the wall-clock time one logical operation may spend across all of its
attempts. The deadline is checked before every new attempt; an attempt already
in flight is never interrupted.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from .exceptions import OperationCancelledError, TransferTimeoutError

logger = logging.getLogger(__name__)


class ExecutionTimeGovernor:
    """
    Deadline tracker for one operation.

    Args:
        maximum_execution_time: Budget in seconds, None for unbounded
        cancel_event: Optional event; once set, the next check raises
            OperationCancelledError
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        maximum_execution_time: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.maximum_execution_time = maximum_execution_time
        self.cancel_event = cancel_event
        self._clock = clock
        self.start_time = clock()
        self.deadline = (
            self.start_time + maximum_execution_time
            if maximum_execution_time is not None else None
        )

    @property
    def elapsed(self) -> float:
        return self._clock() - self.start_time

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, None when unbounded."""
        if self.deadline is None:
            return None
        return self.deadline - self._clock()

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, operation: str = "request") -> None:
        """
        Gate a new attempt.

        Raises:
            OperationCancelledError: If the cancellation event is set
            TransferTimeoutError: If the deadline has passed
        """
        if self.cancel_event is not None and self.cancel_event.is_set():
            logger.info(f"Operation cancelled before {operation}")
            raise OperationCancelledError(f"Operation cancelled before {operation}")

        if self.expired():
            elapsed = self.elapsed
            logger.error(
                f"Execution time exhausted before {operation}: "
                f"elapsed={elapsed:.3f}s max={self.maximum_execution_time:.3f}s"
            )
            raise TransferTimeoutError(elapsed=elapsed, maximum=self.maximum_execution_time)

    def check_delay(self, delay: float, operation: str = "request") -> None:
        """
        Gate a retry backoff: fail now if sleeping ``delay`` would pass the deadline.

        Raises:
            TransferTimeoutError: If the delay does not fit in the remaining budget
        """
        self.check(operation)
        remaining = self.remaining()
        if remaining is not None and delay >= remaining:
            elapsed = self.elapsed
            logger.error(
                f"Retry delay of {delay:.3f}s for {operation} exceeds remaining "
                f"execution time {remaining:.3f}s"
            )
            raise TransferTimeoutError(elapsed=elapsed, maximum=self.maximum_execution_time)
