"""
Unit tests for BlockBlobClient uploads.

Tests single PUT and chunked uploads, request counts, parallelism, content
MD5, metadata and leading blocks.

Author: BlockLift Contributors
Date: 2025
"""

import asyncio
import base64
import io
import math
import os
import threading

import pytest

from blocklift.transfer.context import OperationContext
from blocklift.transfer.exceptions import ValidationError
from blocklift.transfer.integrity import compute_md5
from blocklift.transfer.models import BlobKey, BlockListingFilter, BlockListItem, BlockMode
from blocklift.transfer.options import BlobRequestOptions
from blocklift.wire.memory import InMemoryBlockStore

CONTAINER = "test-container"


class TestSingleShotUpload:
    """Uploads at or below the single-upload threshold."""

    @pytest.mark.asyncio
    async def test_small_upload_is_one_request(self, store, make_client):
        """Test content below the threshold goes out as a single PUT."""
        client = make_client(single_blob_upload_threshold_in_bytes=1024)
        payload = os.urandom(1000)

        await client.upload_from_bytes(payload)

        assert store.request_count == 1
        assert store.request_counts == {"put_blob": 1}
        assert await client.download_to_bytes() == payload

    @pytest.mark.asyncio
    async def test_upload_at_threshold_is_single_shot(self, store, make_client):
        """Test a length equal to the threshold is still one request."""
        client = make_client(single_blob_upload_threshold_in_bytes=512)
        await client.upload_from_bytes(os.urandom(512))
        assert store.request_counts == {"put_blob": 1}

    @pytest.mark.asyncio
    async def test_single_shot_stores_content_md5(self, store, make_client):
        """Test the whole-object digest is stored by default."""
        client = make_client()
        payload = b"Hello, World!"

        properties = await client.upload_from_bytes(payload)

        assert properties.content_md5 == compute_md5(payload)
        assert properties.content_length == len(payload)

    @pytest.mark.asyncio
    async def test_single_shot_without_stored_md5(self, store, make_client):
        """Test no digest is stored when storing is disabled."""
        client = make_client(store_blob_content_md5=False)
        properties = await client.upload_from_bytes(b"data")
        assert properties.content_md5 is None

    @pytest.mark.asyncio
    async def test_transactional_md5_without_storing_above_threshold(self, store, make_client):
        """Test transactional MD5 without a stored digest works for chunked uploads."""
        client = make_client(
            use_transactional_md5=True,
            store_blob_content_md5=False,
            stream_write_size_in_bytes=50,
            single_blob_upload_threshold_in_bytes=10,
        )
        payload = os.urandom(100)

        properties = await client.upload_from_bytes(payload)

        assert store.request_counts == {"put_block": 2, "put_block_list": 1}
        assert properties.content_md5 is None
        assert await client.download_to_bytes() == payload

    @pytest.mark.asyncio
    async def test_empty_upload(self, store, make_client):
        """Test zero bytes create an empty blob."""
        client = make_client()
        properties = await client.upload_from_bytes(b"")

        assert properties.content_length == 0
        assert await client.download_to_bytes() == b""

    @pytest.mark.asyncio
    async def test_upload_text(self, make_client):
        """Test text is encoded before upload."""
        client = make_client()
        await client.upload_text("héllo wörld")
        assert await client.download_text() == "héllo wörld"


class TestChunkedUpload:
    """Uploads above the threshold, staged as blocks."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("chunk_size", [1, 7, 256, 1000, 4096])
    @pytest.mark.parametrize("parallelism", [1, 3, 8])
    async def test_round_trip(self, store, make_client, chunk_size, parallelism):
        """Test download returns exactly the uploaded bytes."""
        payload = os.urandom(1000)
        client = make_client(
            stream_write_size_in_bytes=chunk_size,
            single_blob_upload_threshold_in_bytes=1,
            parallelism_factor=parallelism,
        )

        await client.upload_from_bytes(payload)

        assert await client.download_to_bytes() == payload

    @pytest.mark.asyncio
    async def test_request_count_is_blocks_plus_commit(self, store, make_client):
        """Test N chunks cost N block requests plus one commit."""
        client = make_client(stream_write_size_in_bytes=100, single_blob_upload_threshold_in_bytes=500)
        payload = os.urandom(1050)

        await client.upload_from_bytes(payload)

        blocks = math.ceil(len(payload) / 100)
        assert store.request_counts == {"put_block": blocks, "put_block_list": 1}
        assert store.request_count == blocks + 1

    @pytest.mark.asyncio
    async def test_committed_blocks_match_chunk_layout(self, store, make_client):
        """Test every chunk is a committed block of the chunk size, last one truncated."""
        client = make_client(stream_write_size_in_bytes=300, single_blob_upload_threshold_in_bytes=1)
        await client.upload_from_bytes(os.urandom(1000))

        blocks = await client.download_block_list(BlockListingFilter.COMMITTED)

        assert [block.size for block in blocks] == [300, 300, 300, 100]
        assert all(block.mode == BlockMode.COMMITTED for block in blocks)
        assert len({len(block.id) for block in blocks}) == 1

    @pytest.mark.asyncio
    async def test_stored_md5_covers_whole_object(self, store, make_client):
        """Test the committed digest is the MD5 of the logical content."""
        client = make_client(stream_write_size_in_bytes=64, single_blob_upload_threshold_in_bytes=1, parallelism_factor=4)
        payload = os.urandom(1000)

        properties = await client.upload_from_bytes(payload)

        assert properties.content_md5 == compute_md5(payload)

    @pytest.mark.asyncio
    async def test_parallelism_is_bounded(self, make_client):
        """Test no more than parallelism_factor blocks are in flight."""
        slow_store = InMemoryBlockStore(latency=0.01)
        await slow_store.create_container(CONTAINER)
        client = make_client(
            wire=slow_store,
            stream_write_size_in_bytes=10,
            single_blob_upload_threshold_in_bytes=1,
            parallelism_factor=4,
        )

        await client.upload_from_bytes(os.urandom(200))

        assert 1 < slow_store.max_in_flight <= 4

    @pytest.mark.asyncio
    async def test_sequential_when_parallelism_is_one(self, make_client):
        """Test parallelism 1 keeps a single request in flight."""
        slow_store = InMemoryBlockStore(latency=0.005)
        await slow_store.create_container(CONTAINER)
        client = make_client(wire=slow_store, stream_write_size_in_bytes=10, single_blob_upload_threshold_in_bytes=1)

        await client.upload_from_bytes(os.urandom(50))

        assert slow_store.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_out_of_order_completion_keeps_content_order(self, store, make_client):
        """Test blocks finishing in reverse order still commit in position order."""
        delays = iter([0.05, 0.04, 0.03, 0.02, 0.01, 0.0])

        async def stagger(event):
            if event.phase == "sending" and event.operation == "put_block":
                await asyncio.sleep(next(delays, 0.0))

        store.add_observer(stagger)
        client = make_client(stream_write_size_in_bytes=10, single_blob_upload_threshold_in_bytes=1, parallelism_factor=6)
        payload = os.urandom(60)

        await client.upload_from_bytes(payload)

        assert await client.download_to_bytes() == payload

    @pytest.mark.asyncio
    async def test_upload_from_stream_with_offset_and_length(self, make_client):
        """Test only the selected slice of the stream is uploaded."""
        payload = os.urandom(500)
        client = make_client(stream_write_size_in_bytes=32, single_blob_upload_threshold_in_bytes=1)

        await client.upload_from_stream(io.BytesIO(payload), offset=100, length=250)

        assert await client.download_to_bytes() == payload[100:350]

    @pytest.mark.asyncio
    async def test_per_operation_options_override_defaults(self, store, make_client):
        """Test options passed to a call win over the client defaults."""
        client = make_client(single_blob_upload_threshold_in_bytes=1)
        options = BlobRequestOptions(single_blob_upload_threshold_in_bytes=4096)

        await client.upload_from_bytes(os.urandom(100), options=options)

        assert store.request_counts == {"put_blob": 1}

    @pytest.mark.asyncio
    async def test_context_records_every_attempt(self, make_client):
        """Test the operation context sees one result per request."""
        client = make_client(stream_write_size_in_bytes=10, single_blob_upload_threshold_in_bytes=1)
        context = OperationContext(client_request_id="req-1")

        await client.upload_from_bytes(os.urandom(35), context=context)

        assert context.attempt_count == 5
        assert len(context.attempts_for("put_block")) == 4
        assert all(result.succeeded for result in context.request_results)


class TestMetadata:
    """Metadata set by uploads and commits."""

    @pytest.mark.asyncio
    async def test_metadata_on_single_put(self, make_client):
        """Test metadata is stored with a single PUT."""
        client = make_client()
        await client.upload_from_bytes(b"content", metadata={"owner": "ops"})

        attributes = await client.download_attributes()

        assert attributes.metadata == {"owner": "ops"}

    @pytest.mark.asyncio
    async def test_metadata_on_commit(self, make_client):
        """Test metadata is stored by the block list commit."""
        client = make_client(stream_write_size_in_bytes=4, single_blob_upload_threshold_in_bytes=1)
        client.metadata = {"stage": "final"}

        await client.upload_from_bytes(b"0123456789")

        reader = make_client()
        attributes = await reader.download_attributes()
        assert attributes.metadata == {"stage": "final"}
        assert reader.metadata == {"stage": "final"}

    @pytest.mark.asyncio
    async def test_upload_replaces_metadata(self, make_client):
        """Test a new upload replaces existing metadata."""
        client = make_client()
        await client.upload_from_bytes(b"v1", metadata={"a": "1"})
        await client.upload_from_bytes(b"v2", metadata={"b": "2"})

        attributes = await client.download_attributes()

        assert attributes.metadata == {"b": "2"}


class TestLeadingBlocks:
    """Uploads appended after existing committed blocks."""

    @pytest.mark.asyncio
    async def test_append_after_committed_blocks(self, store, make_client):
        """Test new content is committed after the supplied leading blocks."""
        client = make_client(stream_write_size_in_bytes=4, single_blob_upload_threshold_in_bytes=1)
        first_id = base64.b64encode(b"block-000").decode()
        await client.upload_block(first_id, b"head-")
        await client.upload_block_list([first_id])

        leading = [BlockListItem(id=first_id, mode=BlockMode.COMMITTED)]
        properties = await client.upload_from_bytes(b"tail-bytes", leading_blocks=leading)

        assert await client.download_to_bytes() == b"head-tail-bytes"
        assert properties.content_md5 is None
        committed = await client.download_block_list()
        assert committed[0].id == first_id
        assert len({len(block.id) for block in committed}) == 1

    @pytest.mark.asyncio
    async def test_leading_blocks_force_block_protocol(self, store, make_client):
        """Test a small upload with leading blocks is not a single PUT."""
        client = make_client()
        first_id = base64.b64encode(b"block-000").decode()
        await client.upload_block(first_id, b"a")
        await client.upload_block_list([first_id])
        store.request_counts.clear()

        await client.upload_from_bytes(
            b"b", leading_blocks=[BlockListItem(id=first_id, mode=BlockMode.COMMITTED)]
        )

        assert "put_blob" not in store.request_counts
        assert store.peek(BlobKey(container=CONTAINER, name="blob.bin")).content == b"ab"

    @pytest.mark.asyncio
    async def test_short_leading_ids_within_capacity(self, store, make_client):
        """Test new blocks reuse the length of two-byte leading ids."""
        client = make_client(stream_write_size_in_bytes=1, single_blob_upload_threshold_in_bytes=1)
        first_id = base64.b64encode(b"\x00\x00").decode()
        await client.upload_block(first_id, b"h")
        await client.upload_block_list([first_id])

        await client.upload_from_bytes(
            b"x" * 9, leading_blocks=[BlockListItem(id=first_id, mode=BlockMode.COMMITTED)]
        )

        assert await client.download_to_bytes() == b"h" + b"x" * 9
        committed = await client.download_block_list()
        assert {len(base64.b64decode(block.id)) for block in committed} == {2}

    @pytest.mark.asyncio
    async def test_too_many_chunks_for_short_leading_ids(self, store, make_client):
        """Test more chunks than two-byte ids can number fail before any block is staged."""
        client = make_client(
            stream_write_size_in_bytes=1,
            single_blob_upload_threshold_in_bytes=1,
            parallelism_factor=2,
        )
        first_id = base64.b64encode(b"\x00\x00").decode()
        await client.upload_block(first_id, b"h")
        await client.upload_block_list([first_id])
        store.request_counts.clear()

        with pytest.raises(ValidationError):
            await asyncio.wait_for(
                client.upload_from_bytes(
                    b"x" * 12, leading_blocks=[BlockListItem(id=first_id, mode=BlockMode.COMMITTED)]
                ),
                timeout=5,
            )

        assert store.request_counts == {}
        assert await client.download_to_bytes() == b"h"


class ThreadRecordingFile:
    """Seekable file object that remembers which thread performed each read."""

    def __init__(self, data: bytes):
        self._buffer = io.BytesIO(data)
        self.read_threads = []

    def read(self, size: int = -1) -> bytes:
        self.read_threads.append(threading.get_ident())
        return self._buffer.read(size)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self._buffer.seek(offset, whence)

    def tell(self) -> int:
        return self._buffer.tell()

    def seekable(self) -> bool:
        return True


class TestSourceReads:
    """Where source content is read."""

    @pytest.mark.asyncio
    async def test_chunked_file_reads_leave_event_loop(self, store, make_client):
        """Test file chunks are read outside the event loop thread."""
        client = make_client(
            stream_write_size_in_bytes=10,
            single_blob_upload_threshold_in_bytes=1,
            parallelism_factor=2,
        )
        payload = os.urandom(55)
        source = ThreadRecordingFile(payload)

        await client.upload_from_stream(source)

        assert source.read_threads
        assert threading.get_ident() not in source.read_threads
        assert await client.download_to_bytes() == payload

    @pytest.mark.asyncio
    async def test_single_put_file_read_leaves_event_loop(self, store, make_client):
        """Test a single PUT reads its file outside the event loop thread."""
        client = make_client()
        source = ThreadRecordingFile(b"small")

        await client.upload_from_stream(source)

        assert source.read_threads
        assert threading.get_ident() not in source.read_threads
        assert store.request_counts == {"put_blob": 1}
