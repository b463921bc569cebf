"""Failure injection for the in-memory wire.

Lets tests and benchmarks make chosen operations fail transiently or
permanently, to exercise retry handling and partial-failure semantics.
"""

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from ..transfer.exceptions import ProtocolError

logger = logging.getLogger(__name__)


class FailurePattern(str, Enum):
    """Failure injection patterns."""

    FIRST_N = "first_n"  # The first N matching requests fail
    SEQUENTIAL = "sequential"  # Every Nth matching request fails
    RANDOM = "random"  # Random failures based on rate


@dataclass
class FailureRule:
    """One injected failure behavior for an operation."""

    operation: str
    pattern: FailurePattern = FailurePattern.FIRST_N
    count: int = 1  # FIRST_N: how many; SEQUENTIAL: the interval
    failure_rate: float = 0.0  # RANDOM only
    status_code: int = 503
    error_code: str = "ServerBusy"
    block_id: Optional[str] = None  # Restrict to one block
    _seen: int = field(default=0, init=False, repr=False)
    _fired: int = field(default=0, init=False, repr=False)

    def __post_init__(self):
        """Validate configuration."""
        if not 0.0 <= self.failure_rate <= 1.0:
            raise ValueError("failure_rate must be between 0.0 and 1.0")
        if self.count < 0:
            raise ValueError("count must be non-negative")

    @property
    def fired(self) -> int:
        return self._fired

    def matches(self, operation: str, block_id: Optional[str]) -> bool:
        if self.operation != operation:
            return False
        return self.block_id is None or self.block_id == block_id


class FailureInjector:
    """Decides whether a request fails, according to the registered rules."""

    def __init__(self, seed: Optional[int] = None):
        self.rules: List[FailureRule] = []
        self._random = random.Random(seed)  # Separate instance for determinism

    def add_rule(self, rule: FailureRule) -> FailureRule:
        self.rules.append(rule)
        logger.info(
            f"Registered failure rule for {rule.operation}: "
            f"pattern={rule.pattern.value} status={rule.status_code}"
        )
        return rule

    def clear(self) -> None:
        self.rules.clear()

    def check(self, operation: str, block_id: Optional[str] = None) -> None:
        """
        Raise the injected error if a rule fires for this request.

        Raises:
            ProtocolError: With the rule's status and error code
        """
        for rule in self.rules:
            if not rule.matches(operation, block_id):
                continue
            rule._seen += 1
            if self._should_fail(rule):
                rule._fired += 1
                logger.debug(
                    f"Injecting failure: {rule.status_code} for {operation} "
                    f"(pattern={rule.pattern.value}, seen={rule._seen})"
                )
                raise ProtocolError(
                    f"Injected failure for {operation}",
                    status_code=rule.status_code,
                    error_code=rule.error_code,
                )

    def _should_fail(self, rule: FailureRule) -> bool:
        if rule.pattern == FailurePattern.FIRST_N:
            return rule._seen <= rule.count
        if rule.pattern == FailurePattern.SEQUENTIAL:
            if rule.count == 0:
                return False
            return rule._seen % rule.count == 0
        return self._random.random() < rule.failure_rate

    def stats(self) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for rule in self.rules:
            totals[rule.operation] = totals.get(rule.operation, 0) + rule.fired
        return totals
