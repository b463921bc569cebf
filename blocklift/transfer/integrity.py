"""
Integrity verification.

Per-chunk transactional MD5 lets the store reject corrupted request bodies;
whole-object MD5 is computed over the logical content and stored as the blob's
content digest once the content is committed.
"""

import base64
import hashlib
import logging
from typing import Optional

from .exceptions import Md5MismatchError
from .options import BlobRequestOptions

logger = logging.getLogger(__name__)


def compute_md5(data: bytes) -> str:
    """Return the base64-encoded MD5 digest of ``data``."""
    return base64.b64encode(hashlib.md5(data).digest()).decode()


def transactional_md5(
    data: bytes,
    options: BlobRequestOptions,
    supplied_md5: Optional[str] = None,
) -> Optional[str]:
    """
    Digest to send with one chunk.

    A caller-supplied value is returned untouched and is never recomputed or
    checked locally, even when transactional MD5 is disabled.
    """
    if supplied_md5:
        return supplied_md5
    if options.use_transactional_md5:
        return compute_md5(data)
    return None


class ContentMd5Accumulator:
    """
    Incremental whole-object MD5.

    Chunks must be fed in content order; the planner reads sources
    sequentially, so read order is content order.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._hash = hashlib.md5() if enabled else None
        self.bytes_seen = 0

    def update(self, data: bytes) -> None:
        if self._hash is not None:
            self._hash.update(data)
        self.bytes_seen += len(data)

    def value(self) -> Optional[str]:
        if self._hash is None:
            return None
        return base64.b64encode(self._hash.digest()).decode()


def verify_content_md5(data: bytes, expected_md5: Optional[str]) -> None:
    """
    Check downloaded content against its stored digest.

    Raises:
        Md5MismatchError: If the digest is set and does not match
    """
    if not expected_md5:
        return
    actual = compute_md5(data)
    if actual != expected_md5:
        logger.error(f"Downloaded content MD5 mismatch: expected={expected_md5} actual={actual}")
        raise Md5MismatchError(
            expected=expected_md5,
            actual=actual,
            is_transient=False,
            message=(
                f"Calculated MD5 does not match existing property "
                f"(expected {expected_md5}, got {actual})"
            ),
        )
