"""
Shared state of one chunked transfer.

Workers update it concurrently; every mutation happens under the state's own
lock, so callers never synchronize around it.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass
class ChunkResult:
    """Outcome of one chunk."""

    position: int
    block_id: str
    length: int
    attempts: int


@dataclass
class ChunkFailure:
    """Terminal failure of one chunk."""

    position: int
    error: BaseException
    attempts: int


class TransferState:
    """Per-position results, first error and elapsed time for one operation."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._results: Dict[int, ChunkResult] = {}
        self._failures: Dict[int, ChunkFailure] = {}
        self._attempts: Dict[int, int] = {}
        self._first_failure: Optional[ChunkFailure] = None
        self._started = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started

    @property
    def failed(self) -> bool:
        return self._first_failure is not None

    @property
    def first_failure(self) -> Optional[ChunkFailure]:
        """The failure observed first in time."""
        return self._first_failure

    async def record_attempt(self, position: int) -> int:
        async with self._lock:
            self._attempts[position] = self._attempts.get(position, 0) + 1
            return self._attempts[position]

    async def record_success(self, position: int, block_id: str, length: int) -> None:
        async with self._lock:
            self._results[position] = ChunkResult(
                position=position,
                block_id=block_id,
                length=length,
                attempts=self._attempts.get(position, 0),
            )

    async def record_failure(self, position: int, error: BaseException) -> None:
        async with self._lock:
            failure = ChunkFailure(
                position=position,
                error=error,
                attempts=self._attempts.get(position, 0),
            )
            self._failures[position] = failure
            if self._first_failure is None:
                self._first_failure = failure

    def attempts(self, position: int) -> int:
        return self._attempts.get(position, 0)

    @property
    def total_attempts(self) -> int:
        return sum(self._attempts.values())

    def earliest_failure(self) -> Optional[ChunkFailure]:
        """The failure with the lowest chunk position."""
        if not self._failures:
            return None
        return self._failures[min(self._failures)]

    def failures(self) -> List[ChunkFailure]:
        """Terminal failures ordered by position."""
        return [self._failures[position] for position in sorted(self._failures)]

    def failed_positions(self) -> List[int]:
        return sorted(self._failures)

    def results(self) -> List[ChunkResult]:
        """Completed chunks ordered by position, independent of completion order."""
        return [self._results[position] for position in sorted(self._results)]

    @property
    def completed_count(self) -> int:
        return len(self._results)
