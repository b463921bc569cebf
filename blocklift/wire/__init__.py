"""Wire implementations the transfer engine talks to."""

from .faults import FailureInjector, FailurePattern, FailureRule
from .memory import InMemoryBlockStore
from .protocol import BlockBlobWire, WireEvent

__all__ = [
    "BlockBlobWire",
    "WireEvent",
    "InMemoryBlockStore",
    "FailureInjector",
    "FailurePattern",
    "FailureRule",
]
