"""
Content sources for uploads.

Wraps in-memory buffers and file objects behind one reader that knows how many
bytes are statically available and whether the data can be read again.
"""

import asyncio
import io
import logging
from typing import BinaryIO, Optional, Union

from .exceptions import SourceLengthError, ValidationError

logger = logging.getLogger(__name__)

SourceLike = Union[bytes, bytearray, memoryview, BinaryIO]


class ContentSource:
    """
    Sequential reader over upload content.

    Attributes:
        available: Bytes statically known to be readable from the start
            offset, or None when the source cannot tell (non-seekable stream)
        length: Bytes this transfer will read, or None to read until EOF
        seekable: Whether the source can be rewound and read again
    """

    def __init__(
        self,
        stream: BinaryIO,
        available: Optional[int],
        length: Optional[int],
        seekable: bool,
    ):
        self._stream = stream
        self.available = available
        self.length = length
        self.seekable = seekable
        self._start = stream.tell() if seekable else 0
        self.in_memory = isinstance(stream, io.BytesIO)
        self._consumed = 0

    @classmethod
    def wrap(
        cls,
        source: SourceLike,
        length: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> 'ContentSource':
        """
        Build a source from bytes or a binary file object.

        Args:
            source: Bytes-like content or a readable binary stream
            length: Explicit number of bytes to transfer
            offset: Bytes to skip before the transfer starts

        Raises:
            ValidationError: If offset or length exceed a statically known size
        """
        if length is not None and length < 0:
            raise ValidationError(f"length must be non-negative, got {length}")
        if offset is not None and offset < 0:
            raise ValidationError(f"offset must be non-negative, got {offset}")

        if isinstance(source, (bytes, bytearray, memoryview)):
            source = io.BytesIO(bytes(source))

        seekable = _is_seekable(source)
        available: Optional[int] = None
        if seekable:
            position = source.tell()
            end = source.seek(0, io.SEEK_END)
            source.seek(position)
            if offset:
                if position + offset > end:
                    raise ValidationError(
                        f"offset {offset} is beyond the end of the source ({end - position} bytes)"
                    )
                source.seek(position + offset)
                position += offset
            available = end - position
        elif offset:
            skipped = len(source.read(offset))
            if skipped < offset:
                raise SourceLengthError(requested=offset, available=skipped)

        if length is not None and available is not None and length > available:
            raise ValidationError(
                f"Requested length {length} exceeds the {available} bytes available in the source"
            )

        if length is None:
            length = available

        return cls(source, available=available, length=length, seekable=seekable)

    @property
    def length_known(self) -> bool:
        return self.length is not None

    @property
    def consumed(self) -> int:
        return self._consumed

    def read_chunk(self, size: int) -> bytes:
        """
        Read the next chunk of at most ``size`` bytes.

        When the transfer length is known, a short read means the source
        ended early and raises SourceLengthError. When it is unknown, a short
        or empty read marks the end of the content.
        """
        if self.length is not None:
            size = min(size, self.length - self._consumed)
        if size <= 0:
            return b""

        data = _read_fully(self._stream, size)
        self._consumed += len(data)

        if self.length is not None and len(data) < size:
            raise SourceLengthError(requested=self.length, available=self._consumed)
        return data

    async def read_chunk_async(self, size: int) -> bytes:
        """Same as ``read_chunk``. File reads run in a worker thread; in-memory buffers are read inline."""
        if self.in_memory:
            return self.read_chunk(size)
        return await asyncio.to_thread(self.read_chunk, size)

    def read_all(self) -> bytes:
        if self.length is None:
            data = self._stream.read()
            self._consumed += len(data)
            return data
        return self.read_chunk(self.length - self._consumed)

    async def read_all_async(self) -> bytes:
        if self.in_memory:
            return self.read_all()
        return await asyncio.to_thread(self.read_all)

    def rewind(self) -> None:
        if not self.seekable:
            raise ValidationError("Source is not seekable and cannot be rewound")
        self._stream.seek(self._start)
        self._consumed = 0


def _is_seekable(stream: BinaryIO) -> bool:
    seekable = getattr(stream, "seekable", None)
    try:
        return bool(seekable()) if seekable else False
    except (OSError, ValueError):
        return False


def _read_fully(stream: BinaryIO, size: int) -> bytes:
    """Read until ``size`` bytes are collected or the stream is exhausted."""
    parts = []
    remaining = size
    while remaining > 0:
        data = stream.read(remaining)
        if not data:
            break
        parts.append(data)
        remaining -= len(data)
    return b"".join(parts)
