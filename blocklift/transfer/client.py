"""
Block Blob Client

Public per-blob surface of the transfer engine: chunked parallel uploads,
single-block staging, block list commits, downloads and block list
introspection.

Author: BlockLift Contributors
Date: 2025
"""

import logging
from typing import Dict, Iterable, List, Optional, Union

from ..core.logging_config import set_operation_id
from ..wire.protocol import BlockBlobWire
from .block_ids import BlockIdSequencer, validate_block_id
from .commit import CommitCoordinator, build_block_list
from .context import OperationContext
from .dispatcher import ParallelDispatcher
from .download import DownloadAssembler
from .exceptions import TransferError, ValidationError
from .executor import RequestExecutor
from .governor import ExecutionTimeGovernor
from .integrity import ContentMd5Accumulator, compute_md5, transactional_md5
from .models import (
    AccessCondition,
    BlobAttributes,
    BlobKey,
    BlobProperties,
    BlockListingFilter,
    BlockListItem,
    BlockMode,
)
from .options import BlobRequestOptions
from .planner import plan_upload
from .retry import ExponentialRetryPolicy, RetryPolicy
from .source import ContentSource, SourceLike

logger = logging.getLogger(__name__)

BlockEntry = Union[str, BlockListItem]


class BlockBlobClient:
    """
    Client for one block blob.

    ``properties`` and ``metadata`` reflect the last state this client saw or
    set. ``metadata`` is sent with uploads and commits unless an explicit
    mapping is passed.

    Args:
        wire: Wire implementation
        container: Container name
        name: Blob name
        default_options: Options applied when an operation passes none
        retry_policy: Retry collaborator for every wire call
    """

    def __init__(
        self,
        wire: BlockBlobWire,
        container: str,
        name: str,
        default_options: Optional[BlobRequestOptions] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.wire = wire
        self.key = BlobKey(container=container, name=name)
        self.default_options = default_options or BlobRequestOptions()
        self.retry_policy = retry_policy or ExponentialRetryPolicy()
        self.properties = BlobProperties()
        self.metadata: Dict[str, str] = {}

    @classmethod
    def from_config(cls, wire: BlockBlobWire, container: str, name: str, config) -> 'BlockBlobClient':
        """Build a client from a loaded BlockLiftConfig."""
        return cls(
            wire,
            container,
            name,
            default_options=config.request_options(),
            retry_policy=config.retry.build_policy(),
        )

    @property
    def name(self) -> str:
        return self.key.name

    @property
    def container(self) -> str:
        return self.key.container

    def _begin(
        self,
        options: Optional[BlobRequestOptions],
        context: Optional[OperationContext],
    ) -> tuple[BlobRequestOptions, RequestExecutor]:
        """Effective options and an executor carrying a fresh deadline."""
        effective = self.default_options.merged(options)
        context = context or OperationContext()
        set_operation_id(context.client_request_id)
        governor = ExecutionTimeGovernor(
            maximum_execution_time=effective.maximum_execution_time,
            cancel_event=context.cancel_event,
        )
        return effective, RequestExecutor(governor, self.retry_policy, context)

    # ============================================================================
    # Uploads
    # ============================================================================

    async def upload_from_stream(
        self,
        source: SourceLike,
        length: Optional[int] = None,
        offset: Optional[int] = None,
        access_condition: Optional[AccessCondition] = None,
        metadata: Optional[Dict[str, str]] = None,
        options: Optional[BlobRequestOptions] = None,
        context: Optional[OperationContext] = None,
        leading_blocks: Optional[List[BlockListItem]] = None,
    ) -> BlobProperties:
        """
        Upload content, replacing the blob.

        Content at or below the single-upload threshold goes out as one PUT;
        larger or unsized content is staged as blocks and committed.

        Args:
            source: Bytes or a readable binary stream
            length: Bytes to upload (default: the rest of the source)
            offset: Bytes of the source to skip first
            access_condition: Precondition on the final PUT or commit
            metadata: Metadata to set (default: ``self.metadata``)
            options: Per-operation options
            context: Operation context for diagnostics
            leading_blocks: Existing blocks placed before the new content;
                forces the block protocol

        Returns:
            Properties of the uploaded blob

        Raises:
            ValidationError: If sizes or ids fail pre-flight checks
            UnsupportedConfigurationError: If the options cannot be honored
            SourceLengthError: If an unsized source ended early
            AggregateTransferError: If a block failed after its retries
            TransferTimeoutError: If the execution-time budget ran out
            ProtocolError: If the final PUT or commit was rejected
        """
        effective, executor = self._begin(options, context)
        metadata = self.metadata if metadata is None else metadata
        content = ContentSource.wrap(source, length=length, offset=offset)
        plan = plan_upload(content, effective, allow_single_shot=not leading_blocks)

        try:
            if plan.single_shot:
                properties = await self._put_single(content, effective, executor, metadata, access_condition)
            else:
                properties = await self._put_blocks(
                    content, plan, effective, executor, metadata, access_condition, leading_blocks
                )
        except TransferError as e:
            logger.error(f"Upload to {self.key} failed: {e.error_code}: {e}")
            raise

        self.properties = properties
        self.metadata = dict(metadata)
        logger.info(
            f"Uploaded {properties.content_length} bytes to {self.key} "
            f"in {executor.context.attempt_count} request(s)"
        )
        return properties

    async def upload_from_bytes(self, data: bytes, **kwargs) -> BlobProperties:
        return await self.upload_from_stream(data, **kwargs)

    async def upload_text(self, text: str, encoding: str = "utf-8", **kwargs) -> BlobProperties:
        return await self.upload_from_stream(text.encode(encoding), **kwargs)

    async def _put_single(
        self,
        content: ContentSource,
        options: BlobRequestOptions,
        executor: RequestExecutor,
        metadata: Dict[str, str],
        access_condition: Optional[AccessCondition],
    ) -> BlobProperties:
        data = await content.read_all_async()
        digest = None
        if options.use_transactional_md5 or options.store_blob_content_md5:
            digest = compute_md5(data)
        sent_md5 = digest if options.use_transactional_md5 else None
        stored_md5 = digest if options.store_blob_content_md5 else None

        async def attempt() -> BlobProperties:
            return await self.wire.put_blob(
                self.key,
                data,
                transactional_md5=sent_md5,
                content_md5=stored_md5,
                metadata=metadata,
                access_condition=access_condition,
            )

        return await executor.execute("put_blob", attempt)

    async def _put_blocks(
        self,
        content: ContentSource,
        plan,
        options: BlobRequestOptions,
        executor: RequestExecutor,
        metadata: Dict[str, str],
        access_condition: Optional[AccessCondition],
        leading_blocks: Optional[List[BlockListItem]],
    ) -> BlobProperties:
        if leading_blocks:
            sequencer = BlockIdSequencer.matching(block.id for block in leading_blocks)
        else:
            sequencer = BlockIdSequencer()
        if plan.chunk_count is not None and plan.chunk_count > sequencer.max_positions:
            raise ValidationError(
                f"Upload needs {plan.chunk_count} blocks but ids of {sequencer.raw_length} bytes "
                f"have room for {sequencer.max_positions} positions"
            )

        # The digest of leading blocks is unknown, so no whole-object MD5 then
        accumulator = ContentMd5Accumulator(enabled=options.store_blob_content_md5 and not leading_blocks)
        dispatcher = ParallelDispatcher(self.wire, self.key, executor, options, sequencer)
        results = await dispatcher.dispatch(content, plan, accumulator)

        entries = build_block_list(results, leading_blocks)
        coordinator = CommitCoordinator(self.wire, self.key, executor, options)
        return await coordinator.commit(
            entries,
            content_md5=accumulator.value(),
            metadata=metadata,
            access_condition=access_condition,
        )

    async def upload_block(
        self,
        block_id: str,
        data: SourceLike,
        content_md5: Optional[str] = None,
        access_condition: Optional[AccessCondition] = None,
        options: Optional[BlobRequestOptions] = None,
        context: Optional[OperationContext] = None,
    ) -> None:
        """
        Stage one uncommitted block.

        An explicit ``content_md5`` is sent exactly as given, whatever
        ``use_transactional_md5`` says; otherwise the digest is computed when
        transactional MD5 is enabled. ``access_condition`` is checked against
        the blob as it currently stands.

        Raises:
            ValidationError: If the block id is malformed
            ConditionNotMetError: If ``access_condition`` fails
            ProtocolError: If the store rejects the block (e.g. Md5Mismatch)
        """
        effective, executor = self._begin(options, context)
        validate_block_id(block_id, effective.limits.max_block_id_bytes)
        payload = await ContentSource.wrap(data).read_all_async()
        digest = transactional_md5(payload, effective, supplied_md5=content_md5)

        async def attempt() -> None:
            await self.wire.put_block(
                self.key, block_id, payload,
                transactional_md5=digest,
                access_condition=access_condition,
            )

        await executor.execute("put_block", attempt, block_id=block_id)
        logger.debug(f"Staged block {block_id} ({len(payload)} bytes) on {self.key}")

    async def upload_block_list(
        self,
        entries: Iterable[BlockEntry],
        access_condition: Optional[AccessCondition] = None,
        metadata: Optional[Dict[str, str]] = None,
        options: Optional[BlobRequestOptions] = None,
        context: Optional[OperationContext] = None,
    ) -> BlobProperties:
        """
        Commit a block list. Plain string ids resolve to the latest version.

        Raises:
            ValidationError: If the list fails pre-flight checks
            ProtocolError: If an id is unknown or the precondition fails
        """
        effective, executor = self._begin(options, context)
        metadata = self.metadata if metadata is None else metadata
        items = [
            entry if isinstance(entry, BlockListItem) else BlockListItem(id=entry, mode=BlockMode.LATEST)
            for entry in entries
        ]
        coordinator = CommitCoordinator(self.wire, self.key, executor, effective)
        properties = await coordinator.commit(
            items, metadata=metadata, access_condition=access_condition
        )
        self.properties = properties
        self.metadata = dict(metadata)
        return properties

    # ============================================================================
    # Downloads
    # ============================================================================

    def _assembler(
        self,
        options: Optional[BlobRequestOptions],
        context: Optional[OperationContext],
    ) -> DownloadAssembler:
        effective, executor = self._begin(options, context)
        return DownloadAssembler(self.wire, self.key, executor, effective)

    async def download_to_bytes(
        self,
        access_condition: Optional[AccessCondition] = None,
        options: Optional[BlobRequestOptions] = None,
        context: Optional[OperationContext] = None,
    ) -> bytes:
        """Download the committed content."""
        data, properties = await self._assembler(options, context).download(access_condition)
        self.properties = properties
        return data

    async def download_text(
        self,
        encoding: str = "utf-8",
        access_condition: Optional[AccessCondition] = None,
        options: Optional[BlobRequestOptions] = None,
        context: Optional[OperationContext] = None,
    ) -> str:
        data = await self.download_to_bytes(access_condition, options, context)
        return data.decode(encoding)

    async def download_range(
        self,
        offset: int,
        length: Optional[int] = None,
        access_condition: Optional[AccessCondition] = None,
        options: Optional[BlobRequestOptions] = None,
        context: Optional[OperationContext] = None,
    ) -> bytes:
        return await self._assembler(options, context).download_range(offset, length, access_condition)

    async def download_block_list(
        self,
        listing_filter: BlockListingFilter = BlockListingFilter.COMMITTED,
        access_condition: Optional[AccessCondition] = None,
        options: Optional[BlobRequestOptions] = None,
        context: Optional[OperationContext] = None,
    ) -> List[BlockListItem]:
        return await self._assembler(options, context).block_list(listing_filter, access_condition)

    # ============================================================================
    # Attributes
    # ============================================================================

    async def download_attributes(
        self,
        access_condition: Optional[AccessCondition] = None,
        options: Optional[BlobRequestOptions] = None,
        context: Optional[OperationContext] = None,
    ) -> BlobAttributes:
        """Refresh ``properties`` and ``metadata`` from the store."""
        _, executor = self._begin(options, context)

        async def attempt() -> BlobAttributes:
            return await self.wire.get_attributes(self.key, access_condition=access_condition)

        attributes = await executor.execute("get_attributes", attempt)
        self.properties = attributes.properties
        self.metadata = dict(attributes.metadata)
        return attributes

    async def upload_properties(
        self,
        content_md5: Optional[str] = None,
        content_type: Optional[str] = None,
        access_condition: Optional[AccessCondition] = None,
        options: Optional[BlobRequestOptions] = None,
        context: Optional[OperationContext] = None,
    ) -> BlobProperties:
        """Set content properties without touching content."""
        _, executor = self._begin(options, context)
        updates = {}
        if content_md5 is not None:
            updates['content_md5'] = content_md5
        if content_type is not None:
            updates['content_type'] = content_type

        async def attempt() -> BlobProperties:
            return await self.wire.set_properties(self.key, updates, access_condition=access_condition)

        self.properties = await executor.execute("set_properties", attempt)
        return self.properties
