"""
Request executor.

Runs one wire call to completion: consults the execution-time governor before
every attempt, records each attempt on the operation context, and retries
failures the retry policy accepts.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar

from ..core.logging_config import log_with_context
from .context import OperationContext
from .governor import ExecutionTimeGovernor
from .models import RequestResult
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RequestExecutor:
    """Attempt loop shared by every wire call of one logical operation."""

    def __init__(
        self,
        governor: ExecutionTimeGovernor,
        retry_policy: RetryPolicy,
        context: OperationContext,
    ):
        self.governor = governor
        self.retry_policy = retry_policy
        self.context = context

    async def execute(
        self,
        operation: str,
        call: Callable[[], Awaitable[T]],
        block_id: Optional[str] = None,
        on_attempt: Optional[Callable[[int], Awaitable[None]]] = None,
    ) -> T:
        """
        Run ``call`` until it succeeds or may no longer be retried.

        Args:
            operation: Operation name for diagnostics
            call: Zero-argument coroutine factory issuing one attempt
            block_id: Block the call stages, if any
            on_attempt: Awaited with the attempt number before each attempt

        Returns:
            The value of the successful attempt

        Raises:
            TransferTimeoutError: If the deadline passed before an attempt
            OperationCancelledError: If cancellation was requested
            Exception: The last attempt's error once retries are exhausted
        """
        attempt = 0
        while True:
            attempt += 1
            self.governor.check(operation)
            if on_attempt is not None:
                await on_attempt(attempt)

            result = RequestResult(operation=operation, attempt=attempt, block_id=block_id)
            self.context.record(result)
            log_with_context(logger, logging.DEBUG, f"Attempt {attempt} of {operation}", block_id=block_id, attempt=attempt)

            try:
                value = await call()
            except Exception as e:
                result.end_time = datetime.now(timezone.utc)
                result.status_code = getattr(e, 'status_code', None)
                result.error_code = getattr(e, 'error_code', type(e).__name__)

                delay = self.retry_policy.evaluate(attempt, e)
                if delay is None:
                    logger.error(
                        f"{operation} failed after {attempt} attempt(s): "
                        f"{type(e).__name__}: {e}"
                    )
                    raise

                logger.warning(
                    f"{operation} attempt {attempt} failed, retrying in {delay:.3f}s: "
                    f"{type(e).__name__}: {e}"
                )
                self.governor.check_delay(delay, operation)
                await asyncio.sleep(delay)
                continue

            result.end_time = datetime.now(timezone.utc)
            return value
