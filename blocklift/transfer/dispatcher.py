"""
Parallel chunk dispatcher.

A single producer reads the source sequentially and feeds a bounded queue; a
fixed set of workers takes chunks off the queue and stages them as blocks. A
worker that finishes a chunk immediately takes the next one, so completion
order is arbitrary; results are always reassembled by chunk position.

On the first chunk that fails for good, no further chunks are started.
Chunks already in flight finish or fail on their own, and blocks already
staged are left uncommitted.
"""

import asyncio
import logging
from typing import AsyncIterator, List, Optional, Tuple

from ..wire.protocol import BlockBlobWire
from .block_ids import BlockIdSequencer
from .exceptions import (
    AggregateTransferError,
    OperationCancelledError,
    TransferError,
    TransferTimeoutError,
    ValidationError,
)
from .executor import RequestExecutor
from .integrity import ContentMd5Accumulator, transactional_md5
from .models import BlobKey, ChunkSpec, TransferPlan
from .options import BlobRequestOptions
from .planner import iter_streamed_chunks
from .source import ContentSource
from .state import ChunkResult, TransferState

logger = logging.getLogger(__name__)

_DONE = object()


class ParallelDispatcher:
    """
    Stages the chunks of a plan as blocks with bounded concurrency.

    Args:
        wire: Wire implementation
        key: Target blob
        executor: Request executor of the enclosing operation
        options: Effective request options
        sequencer: Block id source for chunk positions
        state: Shared transfer state (a fresh one by default)
    """

    def __init__(
        self,
        wire: BlockBlobWire,
        key: BlobKey,
        executor: RequestExecutor,
        options: BlobRequestOptions,
        sequencer: BlockIdSequencer,
        state: Optional[TransferState] = None,
    ):
        self.wire = wire
        self.key = key
        self.executor = executor
        self.options = options
        self.sequencer = sequencer
        self.state = state or TransferState()
        self._halted = False

    async def dispatch(
        self,
        source: ContentSource,
        plan: TransferPlan,
        accumulator: Optional[ContentMd5Accumulator] = None,
    ) -> List[ChunkResult]:
        """
        Stage every chunk of ``plan`` and wait for all of them.

        Args:
            source: Content to read
            plan: Transfer plan (chunks None for streamed sources)
            accumulator: Whole-object digest, fed in content order

        Returns:
            Chunk results ordered by position

        Raises:
            TransferTimeoutError: If the execution-time budget ran out
            OperationCancelledError: If cancellation was requested
            SourceLengthError: If the source ended early
            AggregateTransferError: If a chunk failed after its retries
        """
        parallelism = max(1, plan.parallelism)
        queue: asyncio.Queue = asyncio.Queue(maxsize=parallelism)
        workers = [
            asyncio.create_task(self._worker(queue, index))
            for index in range(parallelism)
        ]
        count = 'streamed' if plan.chunk_count is None else plan.chunk_count
        logger.debug(f"Dispatching {count} chunks with {parallelism} workers")

        producer_error: Optional[TransferError] = None
        try:
            try:
                async for chunk, data in self._read_chunks(source, plan):
                    if self.state.failed:
                        break
                    if accumulator is not None:
                        accumulator.update(data)
                    if not await self._enqueue(queue, (chunk, data), workers):
                        break
            except TransferError as e:
                logger.debug(f"Reading the source failed: {e}")
                producer_error = e
                self._halted = True

            for _ in workers:
                if not await self._enqueue(queue, _DONE, workers):
                    break
            outcomes = await asyncio.gather(*workers, return_exceptions=True)
        except asyncio.CancelledError:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        self._raise_for_outcome(producer_error)
        results = self.state.results()
        logger.debug(
            f"Staged {len(results)} blocks in {self.state.total_attempts} attempts "
            f"({self.state.elapsed:.3f}s)"
        )
        return results

    @staticmethod
    async def _enqueue(queue: asyncio.Queue, item, workers: List[asyncio.Task]) -> bool:
        """
        Put ``item`` on the queue while at least one worker is alive.

        Returns False when every worker has exited and the item was not queued.
        """
        putter = asyncio.ensure_future(queue.put(item))
        try:
            while not putter.done():
                alive = [worker for worker in workers if not worker.done()]
                if not alive:
                    return False
                await asyncio.wait([putter, *alive], return_when=asyncio.FIRST_COMPLETED)
            return True
        finally:
            if not putter.done():
                putter.cancel()

    async def _read_chunks(self, source: ContentSource, plan: TransferPlan) -> AsyncIterator[Tuple[ChunkSpec, bytes]]:
        if plan.chunks is None:
            ceiling = min(self.options.limits.max_block_count, self.sequencer.max_positions)
            async for chunk, data in iter_streamed_chunks(source, plan.chunk_size):
                if chunk.position >= ceiling:
                    raise ValidationError(f"Streamed upload needs more than {ceiling} blocks")
                yield chunk, data
            return

        for chunk in plan.chunks:
            yield chunk, await source.read_chunk_async(chunk.length)

    async def _worker(self, queue: asyncio.Queue, index: int) -> None:
        while True:
            item = await queue.get()
            try:
                if item is _DONE:
                    return
                if self._halted or self.state.failed:
                    # Stop scheduling: drain without uploading
                    continue
                chunk, data = item
                await self._upload_chunk(chunk, data)
            finally:
                queue.task_done()

    async def _upload_chunk(self, chunk: ChunkSpec, data: bytes) -> None:
        block_id: Optional[str] = None

        async def on_attempt(_: int) -> None:
            await self.state.record_attempt(chunk.position)

        try:
            block_id = self.sequencer.block_id(chunk.position)
            digest = transactional_md5(data, self.options)

            async def attempt() -> None:
                await self.wire.put_block(self.key, block_id, data, transactional_md5=digest)

            await self.executor.execute("put_block", attempt, block_id=block_id, on_attempt=on_attempt)
        except Exception as e:
            logger.error(f"Chunk {chunk.position} (block {block_id}) failed: {type(e).__name__}: {e}")
            await self.state.record_failure(chunk.position, e)
            return
        await self.state.record_success(chunk.position, block_id, len(data))

    def _raise_for_outcome(self, producer_error: Optional[TransferError]) -> None:
        """Turn collected failures into exactly one terminal error."""
        for failure in self.state.failures():
            if isinstance(failure.error, (TransferTimeoutError, OperationCancelledError)):
                raise failure.error

        if producer_error is not None:
            raise producer_error

        earliest = self.state.earliest_failure()
        if earliest is not None:
            raise AggregateTransferError(
                inner=earliest.error,
                position=earliest.position,
                attempts=earliest.attempts,
                failed_positions=self.state.failed_positions(),
            )
