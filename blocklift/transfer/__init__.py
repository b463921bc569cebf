"""
Block transfer engine.

Planning, parallel staging, commit and download of block blobs.
"""

from .client import BlockBlobClient
from .context import OperationContext
from .exceptions import (
    AggregateTransferError,
    ConditionNotMetError,
    Md5MismatchError,
    OperationCancelledError,
    ProtocolError,
    SourceLengthError,
    TransferError,
    TransferTimeoutError,
    UnsupportedConfigurationError,
    ValidationError,
)
from .models import (
    AccessCondition,
    BlobAttributes,
    BlobKey,
    BlobProperties,
    BlockListingFilter,
    BlockListItem,
    BlockMode,
)
from .options import BlobRequestOptions, ServiceLimits
from .retry import ExponentialRetryPolicy, LinearRetryPolicy, NoRetryPolicy, RetryPolicy

__all__ = [
    "BlockBlobClient",
    "OperationContext",
    "BlobRequestOptions",
    "ServiceLimits",
    "AccessCondition",
    "BlobAttributes",
    "BlobKey",
    "BlobProperties",
    "BlockListingFilter",
    "BlockListItem",
    "BlockMode",
    "RetryPolicy",
    "ExponentialRetryPolicy",
    "LinearRetryPolicy",
    "NoRetryPolicy",
    "TransferError",
    "ValidationError",
    "UnsupportedConfigurationError",
    "ProtocolError",
    "Md5MismatchError",
    "ConditionNotMetError",
    "TransferTimeoutError",
    "OperationCancelledError",
    "AggregateTransferError",
    "SourceLengthError",
]
