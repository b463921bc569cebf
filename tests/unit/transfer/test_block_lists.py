"""
Unit tests for block staging, block list commits and block list reads.

Author: BlockLift Contributors
Date: 2025
"""

import base64
import struct

import pytest

from blocklift.transfer.exceptions import ProtocolError, ValidationError
from blocklift.transfer.models import BlobKey, BlockListingFilter, BlockListItem, BlockMode

CONTAINER = "test-container"


def index_id(index: int) -> str:
    """Block id encoding a 16-bit index."""
    return base64.b64encode(struct.pack("<H", index)).decode()


class TestBlockOrdering:
    """Committed content follows block list order, not upload order."""

    @pytest.mark.asyncio
    async def test_reorder_and_drop_blocks(self, make_client):
        """Test successive commits reorder, drop, re-add and repeat blocks."""
        client = make_client()
        for index in range(10):
            await client.upload_block(index_id(index), str(index).encode())

        await client.upload_block_list([index_id(i) for i in range(10)])
        assert await client.download_text() == "0123456789"

        await client.upload_block_list([index_id(i) for i in range(1, 10)])
        assert await client.download_text() == "123456789"

        await client.upload_block_list([index_id(i) for i in (1, 2, 3, 5, 6, 7, 8, 9)])
        assert await client.download_text() == "12356789"

        # Block 4 left the committed list above, so it must be staged again
        await client.upload_block(index_id(4), b"4")
        await client.upload_block_list([index_id(i) for i in (4, 1, 2, 3, 5, 6, 7, 8, 9)])
        assert await client.download_text() == "412356789"

        await client.upload_block_list([index_id(i) for i in (4, 1, 2, 3, 5, 6, 7, 8, 9, 4)])
        assert await client.download_text() == "4123567894"

    @pytest.mark.asyncio
    async def test_repeated_id_repeats_content(self, make_client):
        """Test an id listed twice contributes its content twice."""
        client = make_client()
        for index in range(4):
            await client.upload_block(index_id(index), str(index).encode())

        await client.upload_block_list([index_id(i) for i in (0, 1, 2, 3, 0)])

        assert await client.download_text() == "01230"

    @pytest.mark.asyncio
    async def test_explicit_modes(self, make_client):
        """Test committed and uncommitted versions of one id resolve separately."""
        client = make_client()
        block_id = index_id(1)
        await client.upload_block(block_id, b"old")
        await client.upload_block_list([block_id])
        await client.upload_block(block_id, b"new")

        await client.upload_block_list([
            BlockListItem(id=block_id, mode=BlockMode.COMMITTED),
            BlockListItem(id=block_id, mode=BlockMode.UNCOMMITTED),
        ])

        assert await client.download_text() == "oldnew"

    @pytest.mark.asyncio
    async def test_latest_prefers_uncommitted(self, make_client):
        """Test a plain id resolves to a newer staged version."""
        client = make_client()
        block_id = index_id(7)
        await client.upload_block(block_id, b"first")
        await client.upload_block_list([block_id])
        await client.upload_block(block_id, b"second")

        await client.upload_block_list([block_id])

        assert await client.download_text() == "second"

    @pytest.mark.asyncio
    async def test_commit_empty_list_creates_empty_blob(self, make_client):
        """Test committing no blocks yields an empty blob."""
        client = make_client()
        properties = await client.upload_block_list([])

        assert properties.content_length == 0
        assert await client.download_to_bytes() == b""


class TestBlockListing:
    """Filtered block list reads."""

    @pytest.mark.asyncio
    async def test_filtered_listing(self, make_client):
        """Test committed, uncommitted and all listings."""
        client = make_client()
        for index in range(3):
            await client.upload_block(index_id(index), b"x" * (index + 1))
        await client.upload_block_list([index_id(0), index_id(1)])
        await client.upload_block(index_id(3), b"yyyy")

        committed = await client.download_block_list(BlockListingFilter.COMMITTED)
        uncommitted = await client.download_block_list(BlockListingFilter.UNCOMMITTED)
        everything = await client.download_block_list(BlockListingFilter.ALL)

        assert [(b.id, b.size) for b in committed] == [(index_id(0), 1), (index_id(1), 2)]
        assert [b.id for b in uncommitted] == [index_id(2), index_id(3)]
        assert all(b.mode == BlockMode.UNCOMMITTED for b in uncommitted)
        assert [b.id for b in everything] == [index_id(0), index_id(1), index_id(2), index_id(3)]
        assert [b.mode for b in everything] == [
            BlockMode.COMMITTED, BlockMode.COMMITTED, BlockMode.UNCOMMITTED, BlockMode.UNCOMMITTED,
        ]

    @pytest.mark.asyncio
    async def test_staged_blocks_are_not_content(self, make_client):
        """Test staging alone does not make the blob readable."""
        client = make_client()
        await client.upload_block(index_id(0), b"data")

        with pytest.raises(ProtocolError) as exc_info:
            await client.download_to_bytes()

        assert exc_info.value.status_code == 404
        staged = await client.download_block_list(BlockListingFilter.UNCOMMITTED)
        assert [b.id for b in staged] == [index_id(0)]

    @pytest.mark.asyncio
    async def test_restaging_moves_block_to_end(self, make_client):
        """Test uploading an id again replaces it and moves it last."""
        client = make_client()
        await client.upload_block(index_id(0), b"a")
        await client.upload_block(index_id(1), b"b")
        await client.upload_block(index_id(0), b"cc")

        staged = await client.download_block_list(BlockListingFilter.UNCOMMITTED)

        assert [(b.id, b.size) for b in staged] == [(index_id(1), 1), (index_id(0), 2)]


class TestBlockListErrors:
    """Rejected blocks and commits."""

    @pytest.mark.asyncio
    async def test_unknown_id_rejects_commit_atomically(self, store, make_client):
        """Test a commit naming an unknown id changes nothing."""
        client = make_client()
        await client.upload_block(index_id(0), b"keep")
        await client.upload_block_list([index_id(0)])
        etag = client.properties.etag

        with pytest.raises(ProtocolError) as exc_info:
            await client.upload_block_list([index_id(0), index_id(9)])

        assert exc_info.value.error_code == "InvalidBlockList"
        blob = store.peek(BlobKey(container=CONTAINER, name="blob.bin"))
        assert blob.content == b"keep"
        assert blob.properties.etag == etag

    @pytest.mark.asyncio
    async def test_mixed_length_ids_rejected_before_request(self, store, make_client):
        """Test ids of different lengths fail validation locally."""
        client = make_client()
        ids = [base64.b64encode(b"ab").decode(), base64.b64encode(b"abc").decode()]

        with pytest.raises(ValidationError):
            await client.upload_block_list(ids)

        assert "put_block_list" not in store.request_counts

    @pytest.mark.asyncio
    async def test_invalid_block_id_rejected_before_request(self, store, make_client):
        """Test a non-base64 id never reaches the store."""
        client = make_client()

        with pytest.raises(ValidationError):
            await client.upload_block("not base64!", b"data")

        assert store.request_count == 0

    @pytest.mark.asyncio
    async def test_oversized_block_id_rejected(self, store, make_client):
        """Test ids decoding to more than 64 bytes are rejected."""
        client = make_client()
        block_id = base64.b64encode(b"x" * 65).decode()

        with pytest.raises(ValidationError):
            await client.upload_block(block_id, b"data")

    @pytest.mark.asyncio
    async def test_store_rejects_mixed_id_lengths(self, store):
        """Test the store refuses a staged id whose length differs."""
        key = BlobKey(container=CONTAINER, name="blob.bin")
        await store.put_block(key, index_id(0), b"a")

        with pytest.raises(ProtocolError) as exc_info:
            await store.put_block(key, base64.b64encode(b"longer").decode(), b"b")

        assert exc_info.value.error_code == "InvalidBlobOrBlock"
