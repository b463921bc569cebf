"""
Download assembly.

Reads the committed content of a blob (the ordered concatenation of its
committed blocks, as the store returns it) and introspects block lists.
Nothing is cached between calls.
"""

import logging
from typing import List, Optional

from ..wire.protocol import BlockBlobWire
from .exceptions import ValidationError
from .executor import RequestExecutor
from .integrity import verify_content_md5
from .models import AccessCondition, BlobKey, BlobProperties, BlockListingFilter, BlockListItem
from .options import BlobRequestOptions

logger = logging.getLogger(__name__)


class DownloadAssembler:
    """Reads content and block lists of one blob."""

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

    async def download(
        self,
        access_condition: Optional[AccessCondition] = None,
    ) -> tuple[bytes, BlobProperties]:
        """
        Download the full committed content.

        The stored content MD5, when present, is checked against the bytes
        unless validation is disabled.

        Raises:
            Md5MismatchError: If the content does not match its stored digest
        """
        async def attempt() -> tuple[bytes, BlobProperties]:
            return await self.wire.get_content(self.key, access_condition=access_condition)

        data, properties = await self.executor.execute("get_content", attempt)
        if not self.options.disable_content_md5_validation:
            verify_content_md5(data, properties.content_md5)
        logger.debug(f"Downloaded {len(data)} bytes from {self.key}")
        return data, properties

    async def download_range(
        self,
        offset: int,
        length: Optional[int] = None,
        access_condition: Optional[AccessCondition] = None,
    ) -> bytes:
        """
        Download ``length`` bytes starting at ``offset`` (to the end when None).

        Range reads are not checked against the whole-object digest.
        """
        if offset < 0:
            raise ValidationError(f"offset must be non-negative, got {offset}")
        if length is not None and length <= 0:
            raise ValidationError(f"length must be positive, got {length}")

        if length is None:
            end = 2 ** 63 - 1
        else:
            end = offset + length - 1

        async def attempt() -> tuple[bytes, BlobProperties]:
            return await self.wire.get_content(
                self.key, byte_range=(offset, end), access_condition=access_condition
            )

        data, _ = await self.executor.execute("get_content", attempt)
        return data

    async def block_list(
        self,
        listing_filter: BlockListingFilter = BlockListingFilter.COMMITTED,
        access_condition: Optional[AccessCondition] = None,
    ) -> List[BlockListItem]:
        """
        Read the block list.

        ``ALL`` returns committed entries in committed order followed by
        uncommitted entries in upload order.
        """
        async def attempt() -> List[BlockListItem]:
            return await self.wire.get_block_list(
                self.key, listing_filter=listing_filter, access_condition=access_condition
            )

        return await self.executor.execute("get_block_list", attempt)
