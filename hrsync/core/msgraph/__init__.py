"""Microsoft Graph access for the group synchronization job.

Architecture:
- client.py: token request and authenticated JSON calls
- members.py: paginated, batched group membership retrieval
"""
from .client import (
    GraphClient,
    REQUEST_TIMEOUT,
    GRAPH_BASE_URL,
    LOGIN_BASE_URL,
    DEFAULT_SCOPE,
)
from .members import (
    DirectoryBatchFetcher,
    MAX_REQUESTS_PER_BATCH,
    MAX_PAGE_SIZE,
    batch_item_from_response,
    chunked,
)

__all__ = [
    "GraphClient",
    "REQUEST_TIMEOUT",
    "GRAPH_BASE_URL",
    "LOGIN_BASE_URL",
    "DEFAULT_SCOPE",
    "DirectoryBatchFetcher",
    "MAX_REQUESTS_PER_BATCH",
    "MAX_PAGE_SIZE",
    "batch_item_from_response",
    "chunked",
]
