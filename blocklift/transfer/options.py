"""
Request options for blob transfers.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

KB = 1024
MB = 1024 * KB


class ServiceLimits(BaseModel):
    """Service-version ceilings the planner validates against."""

    max_block_size_in_bytes: int = Field(default=4000 * MB, gt=0)
    max_block_count: int = Field(default=50000, gt=0)
    max_single_put_size_in_bytes: int = Field(default=5000 * MB, gt=0)
    max_block_id_bytes: int = Field(default=64, gt=0)


class BlobRequestOptions(BaseModel):
    """Options recognized by upload and download operations."""

    stream_write_size_in_bytes: int = Field(default=4 * MB, description="Chunk size")
    single_blob_upload_threshold_in_bytes: int = Field(default=32 * MB)
    parallelism_factor: int = Field(default=1)
    use_transactional_md5: bool = False
    store_blob_content_md5: bool = True
    disable_content_md5_validation: bool = False
    maximum_execution_time: Optional[float] = Field(
        default=None,
        description="Wall-clock budget in seconds for all attempts of one operation",
    )
    limits: ServiceLimits = Field(default_factory=ServiceLimits)

    @field_validator('stream_write_size_in_bytes', 'single_blob_upload_threshold_in_bytes')
    @classmethod
    def validate_sizes(cls, v: int) -> int:
        if v < 1:
            raise ValueError("sizes must be at least 1 byte")
        return v

    @field_validator('parallelism_factor')
    @classmethod
    def validate_parallelism(cls, v: int) -> int:
        if v < 1:
            raise ValueError("parallelism_factor must be at least 1")
        return v

    @field_validator('maximum_execution_time')
    @classmethod
    def validate_execution_time(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("maximum_execution_time must be positive")
        return v

    def merged(self, override: Optional['BlobRequestOptions']) -> 'BlobRequestOptions':
        """Return these defaults overlaid with the fields explicitly set on ``override``."""
        if override is None:
            return self
        updates = override.model_dump(exclude_unset=True)
        if 'limits' in updates:
            updates['limits'] = override.limits
        return self.model_copy(update=updates)
