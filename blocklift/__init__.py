"""
BlockLift: chunked parallel block blob transfers.

Uploads large content as independently staged blocks with bounded
concurrency, per-chunk integrity checks, retries and an overall execution-time
budget, then commits the ordered block list atomically.
"""

__version__ = "0.1.0"

from .transfer.client import BlockBlobClient
from .transfer.options import BlobRequestOptions
from .wire.memory import InMemoryBlockStore

__all__ = ["BlockBlobClient", "BlobRequestOptions", "InMemoryBlockStore", "__version__"]
