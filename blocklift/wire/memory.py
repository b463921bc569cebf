"""
In-Memory Block Store

In-process implementation of the block blob wire. Holds containers, blobs,
committed block lists and staged blocks in memory, and enforces the store-side
rules the engine relies on: digest checks, id validation, access conditions
and atomic commits.

Author: BlockLift Contributors
Date: 2025
"""

import asyncio
import hashlib
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..transfer.block_ids import validate_block_id
from ..transfer.exceptions import (
    ConditionNotMetError,
    Md5MismatchError,
    ProtocolError,
    TransferError,
)
from ..transfer.integrity import compute_md5
from ..transfer.models import (
    AccessCondition,
    BlobAttributes,
    BlobKey,
    BlobProperties,
    BlockListingFilter,
    BlockListItem,
    BlockMode,
)
from ..transfer.options import ServiceLimits
from .faults import FailureInjector
from .protocol import BlockBlobWire, WireEvent

# Status returned by each operation when it succeeds
SUCCESS_STATUS = {
    "put_blob": 201,
    "put_block": 201,
    "put_block_list": 201,
    "get_block_list": 200,
    "get_content": 200,
    "get_attributes": 200,
    "set_properties": 200,
}


class StoredBlock(BaseModel):
    """Block content held by the store."""

    block_id: str = Field(description="Base64-encoded block ID")
    content: bytes = Field(description="Block content")

    model_config = ConfigDict(frozen=True)

    @property
    def size(self) -> int:
        return len(self.content)


class StoredBlob(BaseModel):
    """
    Blob record.

    ``properties.etag`` is None until the first successful PUT or commit; a
    blob with only staged blocks is not readable.
    """

    key: BlobKey
    content: bytes = b""
    metadata: Dict[str, str] = Field(default_factory=dict)
    properties: BlobProperties = Field(default_factory=BlobProperties)
    committed_blocks: List[StoredBlock] = Field(default_factory=list)
    uncommitted_blocks: Dict[str, StoredBlock] = Field(default_factory=dict)  # upload order

    @property
    def exists(self) -> bool:
        return self.properties.etag is not None


class InMemoryBlockStore(BlockBlobWire):
    """
    In-memory block blob store.

    Args:
        limits: Service ceilings to enforce
        latency: Seconds each request spends "on the wire", letting concurrent
            requests overlap
        injector: Optional failure injector
    """

    def __init__(
        self,
        limits: Optional[ServiceLimits] = None,
        latency: float = 0.0,
        injector: Optional[FailureInjector] = None,
    ):
        super().__init__()
        self.limits = limits or ServiceLimits()
        self.latency = latency
        self.injector = injector or FailureInjector()
        self._containers: Dict[str, Dict[str, StoredBlob]] = {}
        self._lock = asyncio.Lock()
        self.request_count = 0
        self.request_counts: Dict[str, int] = {}
        self.in_flight = 0
        self.max_in_flight = 0

    # ============================================================================
    # Container Operations
    # ============================================================================

    async def create_container(self, name: str) -> None:
        """
        Create a container.

        Raises:
            ProtocolError: 409 if it already exists
        """
        BlobKey(container=name, name="probe")  # validates the container name
        async with self._lock:
            if name in self._containers:
                raise ProtocolError(
                    f"Container '{name}' already exists",
                    status_code=409,
                    error_code="ContainerAlreadyExists",
                )
            self._containers[name] = {}

    async def container_exists(self, name: str) -> bool:
        async with self._lock:
            return name in self._containers

    async def reset(self) -> None:
        """Remove all containers and blobs."""
        async with self._lock:
            self._containers.clear()
        self.request_count = 0
        self.request_counts.clear()
        self.max_in_flight = 0

    # ============================================================================
    # Wire Operations
    # ============================================================================

    async def put_blob(
        self,
        key: BlobKey,
        data: bytes,
        transactional_md5: Optional[str] = None,
        content_md5: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        access_condition: Optional[AccessCondition] = None,
    ) -> BlobProperties:
        headers = {'Content-Length': str(len(data))}
        if transactional_md5:
            headers['Content-MD5'] = transactional_md5
        if content_md5:
            headers['x-ms-blob-content-md5'] = content_md5

        async def handler() -> BlobProperties:
            if len(data) > self.limits.max_single_put_size_in_bytes:
                raise ProtocolError(
                    "The request body is too large",
                    status_code=413,
                    error_code="RequestBodyTooLarge",
                )
            self._check_transactional_md5(data, transactional_md5)
            async with self._lock:
                blob = self._get_or_create(key)
                self._check_access_condition(blob, access_condition)
                now = datetime.now(timezone.utc)
                blob.content = data
                blob.metadata = dict(metadata or {})
                blob.committed_blocks = []
                blob.uncommitted_blocks.clear()
                blob.properties = BlobProperties(
                    etag=self._generate_etag(),
                    last_modified=now,
                    content_length=len(data),
                    content_md5=content_md5 or transactional_md5,
                    content_type=blob.properties.content_type,
                )
                return blob.properties.model_copy()

        return await self._request("put_blob", key, headers, handler)

    async def put_block(
        self,
        key: BlobKey,
        block_id: str,
        data: bytes,
        transactional_md5: Optional[str] = None,
        access_condition: Optional[AccessCondition] = None,
    ) -> None:
        headers = {'Content-Length': str(len(data)), 'x-ms-block-id': block_id}
        if transactional_md5:
            headers['Content-MD5'] = transactional_md5

        async def handler() -> None:
            decoded = self._validate_block_id(block_id)
            if len(data) > self.limits.max_block_size_in_bytes:
                raise ProtocolError(
                    "The request body is too large",
                    status_code=413,
                    error_code="RequestBodyTooLarge",
                    details={"block_id": block_id},
                )
            self._check_transactional_md5(data, transactional_md5)
            async with self._lock:
                blob = self._get_or_create(key)
                self._check_access_condition(blob, access_condition)
                self._check_id_length(blob, len(decoded))
                # Re-staging an id replaces its content and moves it to the end
                blob.uncommitted_blocks.pop(block_id, None)
                blob.uncommitted_blocks[block_id] = StoredBlock(block_id=block_id, content=data)

        await self._request("put_block", key, headers, handler, block_id=block_id)

    async def put_block_list(
        self,
        key: BlobKey,
        entries: List[BlockListItem],
        content_md5: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        access_condition: Optional[AccessCondition] = None,
    ) -> BlobProperties:
        headers = {'x-ms-block-count': str(len(entries))}
        if content_md5:
            headers['x-ms-blob-content-md5'] = content_md5

        async def handler() -> BlobProperties:
            if len(entries) > self.limits.max_block_count:
                raise ProtocolError(
                    f"Block list has {len(entries)} entries, more than {self.limits.max_block_count}",
                    status_code=400,
                    error_code="InvalidBlockList",
                )
            async with self._lock:
                blob = self._get_or_create(key)
                self._check_access_condition(blob, access_condition)

                committed_by_id = {block.block_id: block for block in blob.committed_blocks}
                final_blocks: List[StoredBlock] = []
                for entry in entries:
                    block = None
                    if entry.mode == BlockMode.UNCOMMITTED:
                        block = blob.uncommitted_blocks.get(entry.id)
                    elif entry.mode == BlockMode.COMMITTED:
                        block = committed_by_id.get(entry.id)
                    else:
                        # Prefer uncommitted, fall back to committed
                        block = blob.uncommitted_blocks.get(entry.id) or committed_by_id.get(entry.id)

                    if block is None:
                        raise ProtocolError(
                            f"Block '{entry.id}' ({entry.mode.value}) not found",
                            status_code=400,
                            error_code="InvalidBlockList",
                            details={"block_id": entry.id},
                        )
                    final_blocks.append(block)

                # Nothing is mutated until every entry resolved
                now = datetime.now(timezone.utc)
                content = b"".join(block.content for block in final_blocks)
                for block in final_blocks:
                    if blob.uncommitted_blocks.get(block.block_id) is block:
                        del blob.uncommitted_blocks[block.block_id]
                blob.committed_blocks = final_blocks
                blob.content = content
                blob.metadata = dict(metadata or {})
                blob.properties = BlobProperties(
                    etag=self._generate_etag(),
                    last_modified=now,
                    content_length=len(content),
                    content_md5=content_md5,
                    content_type=blob.properties.content_type,
                )
                return blob.properties.model_copy()

        return await self._request("put_block_list", key, headers, handler)

    async def get_block_list(
        self,
        key: BlobKey,
        listing_filter: BlockListingFilter = BlockListingFilter.COMMITTED,
        access_condition: Optional[AccessCondition] = None,
    ) -> List[BlockListItem]:
        headers = {'blocklisttype': listing_filter.value}

        async def handler() -> List[BlockListItem]:
            async with self._lock:
                blob = self._get_blob(key, require_committed=False)
                if access_condition is not None:
                    self._check_access_condition(blob, access_condition)
                items: List[BlockListItem] = []
                if listing_filter in (BlockListingFilter.COMMITTED, BlockListingFilter.ALL):
                    items.extend(
                        BlockListItem(id=block.block_id, mode=BlockMode.COMMITTED, size=block.size)
                        for block in blob.committed_blocks
                    )
                if listing_filter in (BlockListingFilter.UNCOMMITTED, BlockListingFilter.ALL):
                    items.extend(
                        BlockListItem(id=block.block_id, mode=BlockMode.UNCOMMITTED, size=block.size)
                        for block in blob.uncommitted_blocks.values()
                    )
                return items

        return await self._request("get_block_list", key, headers, handler)

    async def get_content(
        self,
        key: BlobKey,
        byte_range: Optional[tuple[int, int]] = None,
        access_condition: Optional[AccessCondition] = None,
    ) -> tuple[bytes, BlobProperties]:
        headers = {}
        if byte_range is not None:
            headers['x-ms-range'] = f"bytes={byte_range[0]}-{byte_range[1]}"

        async def handler() -> tuple[bytes, BlobProperties]:
            async with self._lock:
                blob = self._get_blob(key)
                self._check_access_condition(blob, access_condition)
                content = blob.content
                properties = blob.properties.model_copy()
            if byte_range is None:
                return content, properties
            start, end = byte_range
            if start < 0 or end < start or start >= len(content):
                raise ProtocolError(
                    f"The range {start}-{end} is not satisfiable for {len(content)} bytes",
                    status_code=416,
                    error_code="InvalidRange",
                )
            return content[start:end + 1], properties

        return await self._request("get_content", key, headers, handler)

    async def get_attributes(
        self,
        key: BlobKey,
        access_condition: Optional[AccessCondition] = None,
    ) -> BlobAttributes:
        async def handler() -> BlobAttributes:
            async with self._lock:
                blob = self._get_blob(key)
                self._check_access_condition(blob, access_condition)
                return BlobAttributes(
                    properties=blob.properties.model_copy(),
                    metadata=dict(blob.metadata),
                )

        return await self._request("get_attributes", key, {}, handler)

    async def set_properties(
        self,
        key: BlobKey,
        properties: Dict[str, Any],
        access_condition: Optional[AccessCondition] = None,
    ) -> BlobProperties:
        headers = {f'x-ms-blob-{name.replace("_", "-")}': str(value) for name, value in properties.items()}

        async def handler() -> BlobProperties:
            async with self._lock:
                blob = self._get_blob(key)
                self._check_access_condition(blob, access_condition)
                updates = {
                    name: value for name, value in properties.items()
                    if name in ('content_md5', 'content_type')
                }
                updates['etag'] = self._generate_etag()
                updates['last_modified'] = datetime.now(timezone.utc)
                blob.properties = blob.properties.model_copy(update=updates)
                return blob.properties.model_copy()

        return await self._request("set_properties", key, headers, handler)

    # ============================================================================
    # Inspection
    # ============================================================================

    def peek(self, key: BlobKey) -> Optional[StoredBlob]:
        """Return the stored record without issuing a request."""
        return self._containers.get(key.container, {}).get(key.name)

    # ============================================================================
    # Internals
    # ============================================================================

    async def _request(self, operation: str, key: BlobKey, headers: Dict[str, str], handler, block_id: Optional[str] = None):
        """Run one request: observers, latency, failure injection, handler."""
        self.request_count += 1
        self.request_counts[operation] = self.request_counts.get(operation, 0) + 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await self.notify(WireEvent(phase="sending", operation=operation, key=key, headers=dict(headers)))
            await asyncio.sleep(self.latency)
            try:
                self.injector.check(operation, block_id)
                result = await handler()
            except TransferError as e:
                status_code = getattr(e, 'status_code', 400)
                await self.notify(WireEvent(
                    phase="received", operation=operation, key=key,
                    headers=dict(headers), status_code=status_code,
                ))
                raise
            status_code = SUCCESS_STATUS[operation]
            await self.notify(WireEvent(
                phase="received", operation=operation, key=key,
                headers=dict(headers), status_code=status_code,
            ))
            return result
        finally:
            self.in_flight -= 1

    def _get_or_create(self, key: BlobKey) -> StoredBlob:
        if key.container not in self._containers:
            raise ProtocolError(
                f"Container '{key.container}' not found",
                status_code=404,
                error_code="ContainerNotFound",
            )
        blobs = self._containers[key.container]
        if key.name not in blobs:
            blobs[key.name] = StoredBlob(key=key)
        return blobs[key.name]

    def _get_blob(self, key: BlobKey, require_committed: bool = True) -> StoredBlob:
        if key.container not in self._containers:
            raise ProtocolError(
                f"Container '{key.container}' not found",
                status_code=404,
                error_code="ContainerNotFound",
            )
        blob = self._containers[key.container].get(key.name)
        if blob is None or (require_committed and not blob.exists):
            raise ProtocolError(
                f"Blob '{key}' not found",
                status_code=404,
                error_code="BlobNotFound",
            )
        return blob

    def _validate_block_id(self, block_id: str) -> bytes:
        try:
            return validate_block_id(block_id, self.limits.max_block_id_bytes)
        except TransferError as e:
            raise ProtocolError(
                e.message,
                status_code=400,
                error_code="InvalidBlockId",
                details={"block_id": block_id},
            )

    @staticmethod
    def _check_id_length(blob: StoredBlob, raw_length: int) -> None:
        other = next(iter(blob.uncommitted_blocks), None)
        if other is None and blob.committed_blocks:
            other = blob.committed_blocks[0].block_id
        if other is not None and len(validate_block_id(other)) != raw_length:
            raise ProtocolError(
                "All block IDs of a blob must have the same length",
                status_code=400,
                error_code="InvalidBlobOrBlock",
            )

    @staticmethod
    def _check_transactional_md5(data: bytes, transactional_md5: Optional[str]) -> None:
        if not transactional_md5:
            return
        actual = compute_md5(data)
        if actual != transactional_md5:
            raise Md5MismatchError(expected=transactional_md5, actual=actual)

    @staticmethod
    def _check_access_condition(blob: StoredBlob, access_condition: Optional[AccessCondition]) -> None:
        if access_condition is None:
            return
        status = access_condition.check_conditions(blob.properties.etag, blob.properties.last_modified)
        if status is not None:
            raise ConditionNotMetError()

    @staticmethod
    def _generate_etag() -> str:
        """Generate a unique ETag."""
        return hashlib.md5(uuid.uuid4().bytes).hexdigest()
