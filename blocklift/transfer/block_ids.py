"""
Block ID sequencing.

Block ids are base64 strings. Every id in one committed list must have the same
length, so ids are built from a fixed-width raw form: an operation prefix
followed by the zero-padded chunk position.
"""

import base64
import binascii
import uuid
from typing import Iterable, Optional

from .exceptions import ValidationError

DEFAULT_PREFIX_LENGTH = 8
POSITION_DIGITS = 6


def validate_block_id(block_id: str, max_bytes: int = 64) -> bytes:
    """
    Validate a block id and return its decoded form.

    Raises:
        ValidationError: If the id is not base64 or decodes to too many bytes
    """
    if not block_id:
        raise ValidationError("Block ID cannot be empty")
    try:
        decoded = base64.b64decode(block_id, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Invalid base64 block ID '{block_id}': {e}")
    if len(decoded) > max_bytes:
        raise ValidationError(f"Block ID must be at most {max_bytes} bytes before encoding")
    return decoded


class BlockIdSequencer:
    """
    Derives one id per chunk position.

    The id of a position never changes for the lifetime of the sequencer, so
    retrying a chunk re-stages the same id. Different sequencers use different
    random prefixes, so ids from two operations do not collide.
    """

    def __init__(self, prefix: Optional[str] = None, digits: int = POSITION_DIGITS):
        if prefix is None:
            prefix = uuid.uuid4().hex[:DEFAULT_PREFIX_LENGTH]
        self.prefix = prefix
        self.digits = digits
        self.max_positions = 10 ** digits

    @classmethod
    def matching(cls, existing_ids: Iterable[str]) -> 'BlockIdSequencer':
        """
        Build a sequencer whose ids have the same length as ``existing_ids``.

        Used when newly staged blocks are committed alongside caller-supplied
        ones.

        Raises:
            ValidationError: If the existing ids have mixed lengths or are too
                short to carry a unique position suffix
        """
        lengths = {len(validate_block_id(block_id)) for block_id in existing_ids}
        if not lengths:
            return cls()
        if len(lengths) > 1:
            raise ValidationError(
                f"Existing block IDs have different lengths {sorted(lengths)}; "
                "all IDs in a block list must be the same length"
            )
        raw_length = lengths.pop()
        digits = min(POSITION_DIGITS, raw_length - 1)
        if digits < 1:
            raise ValidationError(
                f"Existing block IDs are {raw_length} byte(s) long, too short to extend"
            )
        prefix = uuid.uuid4().hex[:raw_length - digits]
        while len(prefix) < raw_length - digits:
            prefix += uuid.uuid4().hex[:raw_length - digits - len(prefix)]
        return cls(prefix=prefix, digits=digits)

    @property
    def raw_length(self) -> int:
        return len(self.prefix.encode()) + self.digits

    def block_id(self, position: int) -> str:
        """Return the id for the chunk at ``position``."""
        if position < 0 or position >= self.max_positions:
            raise ValidationError(
                f"Chunk position {position} does not fit in {self.digits} digits"
            )
        raw = f"{self.prefix}{position:0{self.digits}d}".encode()
        return base64.b64encode(raw).decode()
