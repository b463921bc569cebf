"""
Chunk planning.

Decides between a single direct PUT and the block protocol, and lays out the
ordered chunk sequence for known-length sources.
"""

import logging
import math
from typing import AsyncIterator, List, Optional, Tuple

from .exceptions import UnsupportedConfigurationError, ValidationError
from .models import ChunkSpec, TransferPlan
from .options import BlobRequestOptions
from .source import ContentSource

logger = logging.getLogger(__name__)


def single_shot_allowed(length: Optional[int], options: BlobRequestOptions) -> bool:
    """Whether an upload of ``length`` bytes fits in one direct PUT."""
    if length is None:
        return False
    if length > options.single_blob_upload_threshold_in_bytes:
        return False
    if length > options.limits.max_single_put_size_in_bytes:
        return False
    return True


def plan_chunks(total_length: int, chunk_size: int) -> List[ChunkSpec]:
    """Split ``total_length`` bytes into ceil(total/chunk_size) chunks, the last truncated."""
    count = math.ceil(total_length / chunk_size) if total_length else 0
    chunks = []
    for position in range(count):
        offset = position * chunk_size
        chunks.append(ChunkSpec(
            position=position,
            offset=offset,
            length=min(chunk_size, total_length - offset),
        ))
    return chunks


def plan_upload(
    source: ContentSource,
    options: BlobRequestOptions,
    allow_single_shot: bool = True,
) -> TransferPlan:
    """
    Build the transfer plan for an upload.

    Args:
        source: Wrapped content source
        options: Effective request options
        allow_single_shot: False forces the block protocol

    Returns:
        TransferPlan

    Raises:
        ValidationError: If the layout violates the configured service limits
        UnsupportedConfigurationError: If transactional MD5 is requested for
            an unsized source that cannot be read again, or without storing
            the content MD5 for content small enough for a single PUT
    """
    chunk_size = options.stream_write_size_in_bytes
    limits = options.limits

    if chunk_size > limits.max_block_size_in_bytes:
        raise ValidationError(
            f"stream_write_size_in_bytes {chunk_size} exceeds the maximum block size "
            f"of {limits.max_block_size_in_bytes}"
        )

    if not source.length_known:
        if options.use_transactional_md5 and not source.seekable:
            raise UnsupportedConfigurationError(
                "Transactional MD5 cannot be used with a source of unknown length "
                "that cannot be read again"
            )
        logger.debug(f"Planning streamed upload: chunk_size={chunk_size}, parallelism=1")
        return TransferPlan(
            total_length=None,
            chunk_size=chunk_size,
            single_shot=False,
            parallelism=1,
            chunks=None,
        )

    total = source.length
    if allow_single_shot and single_shot_allowed(total, options):
        # One PUT digest header both verifies the body and sets the stored MD5
        if options.use_transactional_md5 and not options.store_blob_content_md5:
            raise UnsupportedConfigurationError(
                "use_transactional_md5 requires store_blob_content_md5 for uploads "
                f"at or below the single-upload threshold ({total} bytes)"
            )
        logger.debug(f"Planning single PUT of {total} bytes")
        return TransferPlan(
            total_length=total,
            chunk_size=chunk_size,
            single_shot=True,
            parallelism=1,
            chunks=[ChunkSpec(position=0, offset=0, length=total)],
        )

    chunks = plan_chunks(total, chunk_size)
    if len(chunks) > limits.max_block_count:
        raise ValidationError(
            f"Upload of {total} bytes needs {len(chunks)} blocks of {chunk_size} bytes, "
            f"more than the maximum of {limits.max_block_count}"
        )

    parallelism = max(1, min(options.parallelism_factor, len(chunks)))
    logger.debug(
        f"Planning block upload: {total} bytes in {len(chunks)} chunks, "
        f"parallelism={parallelism}"
    )
    return TransferPlan(
        total_length=total,
        chunk_size=chunk_size,
        single_shot=False,
        parallelism=parallelism,
        chunks=chunks,
    )


async def iter_streamed_chunks(source: ContentSource, chunk_size: int) -> AsyncIterator[Tuple[ChunkSpec, bytes]]:
    """Read an unsized source one chunk at a time until it is exhausted."""
    position = 0
    offset = 0
    while True:
        data = await source.read_chunk_async(chunk_size)
        if not data:
            return
        yield ChunkSpec(position=position, offset=offset, length=len(data)), data
        position += 1
        offset += len(data)
        if len(data) < chunk_size:
            return
