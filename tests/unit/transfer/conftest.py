"""
Shared fixtures for transfer engine tests.
"""

import pytest

from blocklift.transfer.client import BlockBlobClient
from blocklift.transfer.options import BlobRequestOptions
from blocklift.transfer.retry import ExponentialRetryPolicy
from blocklift.wire.memory import InMemoryBlockStore

CONTAINER = "test-container"


@pytest.fixture
def fast_retry():
    """Exponential retry with millisecond backoff."""
    return ExponentialRetryPolicy(max_attempts=4, initial_backoff=0.001, max_backoff=0.01)


@pytest.fixture
async def store():
    """In-memory store with a test container."""
    store = InMemoryBlockStore()
    await store.create_container(CONTAINER)
    return store


@pytest.fixture
def make_client(store, fast_retry):
    """Factory for clients on the shared store."""
    def factory(name: str = "blob.bin", retry_policy=None, wire=None, **option_fields) -> BlockBlobClient:
        return BlockBlobClient(
            wire or store,
            CONTAINER,
            name,
            default_options=BlobRequestOptions(**option_fields),
            retry_policy=retry_policy or fast_retry,
        )
    return factory
