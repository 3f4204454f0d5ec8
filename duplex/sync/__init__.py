"""Sync module - watches conversation logs and uploads them to Duplex."""

from .api_client import DuplexApiClient, ExtractionResponse
from .http_client import DuplexAuthError, DuplexClientError
from .retry import RetryConfig, retry_with_backoff
from .state import StateStoreError, StatusCounts, SyncState, SyncStateStore, SyncStatus
from .sync_engine import SyncEngine, SyncError, SyncItem, UnknownParserError, compute_hash
from .watcher import FileChangeEvent, FileWatcher, discover_and_watch

__all__ = [
    "DuplexApiClient",
    "DuplexAuthError",
    "DuplexClientError",
    "ExtractionResponse",
    "FileChangeEvent",
    "FileWatcher",
    "RetryConfig",
    "StateStoreError",
    "StatusCounts",
    "SyncEngine",
    "SyncError",
    "SyncItem",
    "SyncState",
    "SyncStateStore",
    "SyncStatus",
    "UnknownParserError",
    "compute_hash",
    "discover_and_watch",
    "retry_with_backoff",
]
