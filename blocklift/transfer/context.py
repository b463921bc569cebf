"""
Operation context.

Carries per-operation diagnostics: a client request id used as the logging
correlation id, an optional cancellation event, and the record of every
attempt actually issued.
"""

import asyncio
import uuid
from typing import List, Optional

from .models import RequestResult


class OperationContext:
    """Diagnostics and control for one or more logical operations."""

    def __init__(
        self,
        client_request_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.client_request_id = client_request_id or str(uuid.uuid4())
        self.cancel_event = cancel_event
        self.request_results: List[RequestResult] = []

    def record(self, result: RequestResult) -> None:
        self.request_results.append(result)

    @property
    def attempt_count(self) -> int:
        return len(self.request_results)

    def attempts_for(self, operation: str) -> List[RequestResult]:
        return [result for result in self.request_results if result.operation == operation]

    def clear(self) -> None:
        self.request_results.clear()
