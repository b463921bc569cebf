"""
Block list commit.

A commit fixes an ordered list of block references as the blob's content and
sets its properties and metadata in the same atomic request. Ids may repeat;
the block's content then appears at every position that references it.
"""

import logging
from typing import Dict, Iterable, List, Optional

from ..wire.protocol import BlockBlobWire
from .block_ids import validate_block_id
from .exceptions import ValidationError
from .executor import RequestExecutor
from .models import AccessCondition, BlobKey, BlobProperties, BlockListItem, BlockMode
from .options import BlobRequestOptions
from .state import ChunkResult

logger = logging.getLogger(__name__)


def build_block_list(
    results: Iterable[ChunkResult],
    leading_blocks: Optional[Iterable[BlockListItem]] = None,
) -> List[BlockListItem]:
    """
    Block list for a chunked upload: caller-supplied leading entries followed
    by the freshly staged blocks in chunk order.
    """
    entries = list(leading_blocks or [])
    entries.extend(
        BlockListItem(id=result.block_id, mode=BlockMode.UNCOMMITTED)
        for result in sorted(results, key=lambda r: r.position)
    )
    return entries


def validate_block_list(entries: List[BlockListItem], options: BlobRequestOptions) -> None:
    """
    Pre-flight checks on a block list.

    Raises:
        ValidationError: If an id is malformed, ids differ in length, or the
            list is longer than the configured block count ceiling
    """
    limits = options.limits
    if len(entries) > limits.max_block_count:
        raise ValidationError(
            f"Block list has {len(entries)} entries, more than {limits.max_block_count}"
        )
    lengths = {len(validate_block_id(entry.id, limits.max_block_id_bytes)) for entry in entries}
    if len(lengths) > 1:
        raise ValidationError(
            f"Block IDs in one block list must have the same length, got {sorted(lengths)}"
        )


class CommitCoordinator:
    """Issues the block list commit for one blob."""

    def __init__(
        self,
        wire: BlockBlobWire,
        key: BlobKey,
        executor: RequestExecutor,
        options: BlobRequestOptions,
    ):
        self.wire = wire
        self.key = key
        self.executor = executor
        self.options = options

    async def commit(
        self,
        entries: List[BlockListItem],
        content_md5: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        access_condition: Optional[AccessCondition] = None,
    ) -> BlobProperties:
        """
        Commit ``entries`` as the blob's content.

        Args:
            entries: Ordered block references, ids may repeat
            content_md5: Whole-object digest to store, if any
            metadata: Metadata replacing the blob's metadata
            access_condition: Precondition; if it fails nothing changes

        Returns:
            Properties of the committed blob

        Raises:
            ValidationError: If the list fails pre-flight checks
            ProtocolError: If the store rejects the commit
        """
        validate_block_list(entries, self.options)

        async def attempt() -> BlobProperties:
            return await self.wire.put_block_list(
                self.key,
                entries,
                content_md5=content_md5,
                metadata=metadata,
                access_condition=access_condition,
            )

        properties = await self.executor.execute("put_block_list", attempt)
        logger.info(
            f"Committed {len(entries)} blocks to {self.key} "
            f"({properties.content_length} bytes, etag={properties.etag})"
        )
        return properties
