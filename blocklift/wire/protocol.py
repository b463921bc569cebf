"""
Wire protocol interface.

Defines the block blob operations the transfer engine consumes. Encoding,
authentication and HTTP transport live behind implementations of this
interface.

Each call returns on success and raises on failure:
- ProtocolError with ``is_transient`` set for retryable rejections (5xx,
  transactional digest mismatch)
- ProtocolError without it for permanent rejections (malformed id,
  precondition failed, oversized block, not found)
- ConnectionError and friends for network faults
"""

import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..transfer.models import (
    AccessCondition,
    BlobAttributes,
    BlobKey,
    BlobProperties,
    BlockListingFilter,
    BlockListItem,
)

logger = logging.getLogger(__name__)


@dataclass
class WireEvent:
    """A request about to be processed or a response just produced."""

    phase: str  # "sending" or "received"
    operation: str
    key: BlobKey
    headers: Dict[str, str] = field(default_factory=dict)
    status_code: Optional[int] = None


WireObserver = Callable[[WireEvent], Union[None, Awaitable[None]]]


class BlockBlobWire(ABC):
    """
    Abstract block blob wire.

    Observers registered with ``add_observer`` see every request before it is
    processed and every response after; they may be coroutines.
    """

    def __init__(self):
        self._observers: List[WireObserver] = []

    def add_observer(self, observer: WireObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: WireObserver) -> None:
        self._observers.remove(observer)

    async def notify(self, event: WireEvent) -> None:
        for observer in list(self._observers):
            result = observer(event)
            if inspect.isawaitable(result):
                await result

    @abstractmethod
    async def put_blob(
        self,
        key: BlobKey,
        data: bytes,
        transactional_md5: Optional[str] = None,
        content_md5: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        access_condition: Optional[AccessCondition] = None,
    ) -> BlobProperties:
        """Replace the blob with ``data`` in one request."""

    @abstractmethod
    async def put_block(
        self,
        key: BlobKey,
        block_id: str,
        data: bytes,
        transactional_md5: Optional[str] = None,
        access_condition: Optional[AccessCondition] = None,
    ) -> None:
        """Stage one uncommitted block, optionally guarded by a precondition on the blob."""

    @abstractmethod
    async def put_block_list(
        self,
        key: BlobKey,
        entries: List[BlockListItem],
        content_md5: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        access_condition: Optional[AccessCondition] = None,
    ) -> BlobProperties:
        """Atomically commit ``entries`` as the blob's content."""

    @abstractmethod
    async def get_block_list(
        self,
        key: BlobKey,
        listing_filter: BlockListingFilter = BlockListingFilter.COMMITTED,
        access_condition: Optional[AccessCondition] = None,
    ) -> List[BlockListItem]:
        """Read the filtered block list."""

    @abstractmethod
    async def get_content(
        self,
        key: BlobKey,
        byte_range: Optional[tuple[int, int]] = None,
        access_condition: Optional[AccessCondition] = None,
    ) -> tuple[bytes, BlobProperties]:
        """Read committed content, optionally an inclusive (start, end) range."""

    @abstractmethod
    async def get_attributes(
        self,
        key: BlobKey,
        access_condition: Optional[AccessCondition] = None,
    ) -> BlobAttributes:
        """Read properties and metadata."""

    @abstractmethod
    async def set_properties(
        self,
        key: BlobKey,
        properties: Dict[str, Any],
        access_condition: Optional[AccessCondition] = None,
    ) -> BlobProperties:
        """Update content properties (content_md5, content_type) in place."""
