"""
Transfer Models

Pydantic models for blob identity, block lists, properties, access conditions,
transfer plans and per-attempt request results.

Author: BlockLift Contributors
Date: 2025
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ContainerNameValidator:
    """
    Validates container names.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens only
    - Must start and end with letter or number
    - No consecutive hyphens
    """

    PATTERN = re.compile(r'^[a-z0-9]([a-z0-9-]*[a-z0-9])?$')
    MIN_LENGTH = 3
    MAX_LENGTH = 63

    @classmethod
    def validate(cls, name: str) -> tuple[bool, Optional[str]]:
        """
        Validate container name.

        Args:
            name: Container name to validate

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not name:
            return False, "Container name cannot be empty"

        if len(name) < cls.MIN_LENGTH:
            return False, f"Container name must be at least {cls.MIN_LENGTH} characters"

        if len(name) > cls.MAX_LENGTH:
            return False, f"Container name must be at most {cls.MAX_LENGTH} characters"

        if not cls.PATTERN.match(name):
            return False, "Container name must contain only lowercase letters, numbers, and hyphens, and must start/end with letter or number"

        if '--' in name:
            return False, "Container name cannot contain consecutive hyphens"

        return True, None


class BlobKey(BaseModel):
    """
    Identity of a blob: owning container plus blob name.

    The engine resolves a blob through this key; it never holds a reference
    back to a client or container object.
    """

    container: str = Field(description="Container name")
    name: str = Field(description="Blob name")

    model_config = ConfigDict(frozen=True)

    @field_validator('container')
    @classmethod
    def validate_container(cls, v: str) -> str:
        is_valid, error = ContainerNameValidator.validate(v)
        if not is_valid:
            raise ValueError(error)
        return v

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or len(v) > 1024:
            raise ValueError("Blob name must be between 1 and 1024 characters")
        return v

    def __str__(self) -> str:
        return f"{self.container}/{self.name}"


# ============================================================================
# Block List Models
# ============================================================================


class BlockMode(str, Enum):
    """Where a block list entry is looked up when committing."""
    COMMITTED = "Committed"
    UNCOMMITTED = "Uncommitted"
    LATEST = "Latest"


class BlockListingFilter(str, Enum):
    """Which blocks a block list read returns."""
    COMMITTED = "committed"
    UNCOMMITTED = "uncommitted"
    ALL = "all"


class BlockListItem(BaseModel):
    """
    Block list entry.

    On commit, ``mode`` tells the store where to resolve the id. On read,
    ``mode`` reports whether the block is committed or uncommitted and
    ``size`` is filled in.
    """

    id: str = Field(description="Base64-encoded block ID")
    mode: BlockMode = Field(default=BlockMode.LATEST)
    size: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)


# ============================================================================
# Blob State Models
# ============================================================================


class BlobProperties(BaseModel):
    """Blob properties observable by callers."""

    etag: Optional[str] = Field(default=None, description="Entity tag for the blob")
    last_modified: Optional[datetime] = Field(default=None)
    content_length: int = Field(default=0)
    content_md5: Optional[str] = Field(default=None)
    content_type: str = Field(default="application/octet-stream")

    def to_headers(self) -> Dict[str, str]:
        """Convert properties to HTTP headers."""
        headers = {
            'Content-Length': str(self.content_length),
            'Content-Type': self.content_type,
        }
        if self.etag:
            headers['ETag'] = f'"{self.etag}"'
        if self.last_modified:
            headers['Last-Modified'] = self.last_modified.strftime('%a, %d %b %Y %H:%M:%S GMT')
        if self.content_md5:
            headers['Content-MD5'] = self.content_md5
        return headers


class BlobAttributes(BaseModel):
    """Properties plus metadata, as returned by an attributes read."""

    properties: BlobProperties
    metadata: Dict[str, str] = Field(default_factory=dict)


class AccessCondition(BaseModel):
    """Preconditions guarding a mutating or reading operation."""

    if_match: Optional[str] = Field(default=None, description="ETag to match")
    if_none_match: Optional[str] = Field(default=None, description="ETag to not match")
    if_modified_since: Optional[datetime] = Field(default=None)
    if_unmodified_since: Optional[datetime] = Field(default=None)

    @classmethod
    def generate_if_match(cls, etag: str) -> 'AccessCondition':
        return cls(if_match=etag)

    @classmethod
    def generate_if_not_exists(cls) -> 'AccessCondition':
        return cls(if_none_match="*")

    def is_empty(self) -> bool:
        return not (
            self.if_match or self.if_none_match
            or self.if_modified_since or self.if_unmodified_since
        )

    def check_conditions(self, etag: Optional[str], last_modified: Optional[datetime]) -> Optional[int]:
        """
        Check the conditions against the current blob state.

        Args:
            etag: Current blob ETag, None if the blob does not exist
            last_modified: Current blob last modified time

        Returns:
            None if conditions pass, HTTP status code if they fail
        """
        if self.if_match:
            if etag is None:
                return 412
            if self.if_match != "*" and self.if_match not in (etag, f'"{etag}"'):
                return 412

        if self.if_none_match and etag is not None:
            if self.if_none_match == "*" or self.if_none_match in (etag, f'"{etag}"'):
                return 412

        if self.if_modified_since and last_modified and last_modified <= self.if_modified_since:
            return 412

        if self.if_unmodified_since and last_modified and last_modified > self.if_unmodified_since:
            return 412

        return None


# ============================================================================
# Planning and Diagnostics
# ============================================================================


class ChunkSpec(BaseModel):
    """A planned contiguous byte range, transferred as one block."""

    position: int = Field(ge=0)
    offset: int = Field(ge=0, description="Offset relative to the start of the transfer")
    length: int = Field(ge=0)

    model_config = ConfigDict(frozen=True)


class TransferPlan(BaseModel):
    """
    Ordered chunk layout for one upload.

    ``chunks`` is None when the total length is unknown; chunks are then
    produced one at a time as the source is read.
    """

    total_length: Optional[int] = None
    chunk_size: int
    single_shot: bool = False
    parallelism: int = 1
    chunks: Optional[List[ChunkSpec]] = None

    @property
    def chunk_count(self) -> Optional[int]:
        return None if self.chunks is None else len(self.chunks)


class RequestResult(BaseModel):
    """One attempt actually issued against the wire."""

    operation: str
    attempt: int
    block_id: Optional[str] = None
    start_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = None
    status_code: Optional[int] = Field(default=None, description="Status of a failed attempt")
    error_code: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.end_time is not None and self.error_code is None
