"""
Transfer Exception Hierarchy

Error kinds raised by the block transfer engine, with error codes and context.

Author: BlockLift Contributors
Date: 2025
"""

from typing import Any, Dict, Optional


class TransferError(Exception):
    """
    Base exception for all transfer engine errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., 'Md5Mismatch')
        details: Additional context (block_id, position, etc.)
        is_transient: Whether a retry may succeed
    """

    error_code: str = "TransferError"
    is_transient: bool = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for diagnostics."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            }
        }


# ========== Pre-flight Errors ==========

class ValidationError(TransferError, ValueError):
    """Raised when a size or option check fails before any request is issued."""
    error_code = "ValidationError"


class UnsupportedConfigurationError(TransferError, ValueError):
    """Raised when the requested options cannot be satisfied together."""
    error_code = "UnsupportedConfiguration"


# ========== Remote Errors ==========

class ProtocolError(TransferError):
    """
    Raised when the remote side rejects a request.

    The status code mirrors the HTTP status the store answered with; 5xx
    answers are transient, as is a transactional digest mismatch.
    """
    error_code = "ProtocolError"

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: Optional[str] = None,
        is_transient: Optional[bool] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = dict(details or {})
        details["status_code"] = status_code
        super().__init__(message, error_code=error_code, details=details)
        self.status_code = status_code
        if is_transient is None:
            is_transient = status_code >= 500
        self.is_transient = is_transient


class Md5MismatchError(ProtocolError):
    """Raised when transmitted or downloaded bytes do not match their digest."""

    def __init__(
        self,
        expected: str,
        actual: str,
        message: Optional[str] = None,
        is_transient: bool = True,
    ):
        message = message or (
            f"The MD5 value specified in the request did not match the MD5 "
            f"value calculated by the server (expected {expected}, got {actual})"
        )
        super().__init__(
            message,
            status_code=400,
            error_code="Md5Mismatch",
            is_transient=is_transient,
            details={"expected_md5": expected, "calculated_md5": actual},
        )


class ConditionNotMetError(ProtocolError):
    """Raised when an access condition evaluated against the blob fails."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message or "The condition specified using HTTP conditional header(s) is not met",
            status_code=412,
            error_code="ConditionNotMet",
            is_transient=False,
        )


# ========== Operation Outcome Errors ==========

class TransferTimeoutError(TransferError, TimeoutError):
    """Raised when the operation's execution-time budget is exhausted."""
    error_code = "OperationTimedOut"

    def __init__(self, elapsed: float, maximum: float, message: Optional[str] = None):
        message = message or (
            f"The maximum execution time of {maximum:.3f}s was exceeded "
            f"after {elapsed:.3f}s"
        )
        super().__init__(
            message,
            details={"elapsed_seconds": elapsed, "maximum_execution_time": maximum},
        )
        self.elapsed = elapsed
        self.maximum = maximum


class OperationCancelledError(TransferError):
    """Raised when the caller's cancellation signal is observed before an attempt."""
    error_code = "OperationCancelled"


class AggregateTransferError(TransferError):
    """
    Raised when a chunk exhausted its retries.

    Wraps the earliest-by-position underlying error; the commit is never
    attempted once this is raised.
    """
    error_code = "TransferFailed"

    def __init__(
        self,
        inner: BaseException,
        position: int,
        attempts: int,
        failed_positions: Optional[list] = None,
    ):
        message = (
            f"Chunk {position} failed after {attempts} attempt(s): "
            f"{type(inner).__name__}: {inner}"
        )
        super().__init__(
            message,
            details={
                "position": position,
                "attempts": attempts,
                "failed_positions": failed_positions or [position],
            },
        )
        self.inner = inner
        self.position = position
        self.attempts = attempts
        self.__cause__ = inner


class SourceLengthError(TransferError):
    """
    Raised when a source without a known length ends before the requested
    number of bytes was read.
    """
    error_code = "SourceTooShort"

    def __init__(self, requested: int, available: int):
        super().__init__(
            f"Requested {requested} bytes but the source ended after {available} bytes",
            details={"requested": requested, "available": available},
        )
        self.requested = requested
        self.available = available


def is_transient_error(error: BaseException) -> bool:
    """
    Determine if an error is transient and can be retried.

    Args:
        error: Exception to check

    Returns:
        True if error is transient and the attempt should be retried
    """
    if isinstance(error, TransferError):
        return getattr(error, 'is_transient', False)

    # Network faults surfaced by the wire
    if isinstance(error, (
        ConnectionError,
        ConnectionRefusedError,
        ConnectionResetError,
        TimeoutError,
    )):
        return True

    return False
