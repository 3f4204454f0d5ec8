"""Protocol types for SyncEngine dependencies.

Defines the interfaces that SyncEngine requires from its collaborators,
enabling easier testing and looser coupling.
"""

from typing import Optional, Protocol, runtime_checkable

from ..parsers import Conversation, ConversationParser
from .state import StatusCounts, SyncState, SyncStatus

__all__ = [
    "ConversationParser",
    "TokenProviderProtocol",
    "UploadClientProtocol",
    "SyncStateStoreProtocol",
]


@runtime_checkable
class TokenProviderProtocol(Protocol):
    """Source of bearer tokens for uploads."""

    def get_valid_token(self) -> str: ...


@runtime_checkable
class UploadClientProtocol(Protocol):
    """Interface for sending conversations to the Duplex API."""

    def upload_conversation(
        self,
        conversation: Conversation,
        workspace_id: str = ...,
        token: Optional[str] = None,
    ): ...


@runtime_checkable
class SyncStateStoreProtocol(Protocol):
    """Interface for persisted per-file sync state."""

    def get(self, file_path: str) -> Optional[SyncState]: ...

    def upsert(self, state: SyncState) -> None: ...

    def mark_pending(
        self, file_path: str, content_hash: str, modified_at: Optional[int] = None
    ) -> None: ...

    def mark_syncing(self, file_path: str, content_hash: Optional[str] = None) -> bool: ...

    def mark_complete(
        self,
        file_path: str,
        workflow_id: str,
        content_hash: Optional[str] = None,
        synced_at: Optional[int] = None,
    ) -> bool: ...

    def update_status(self, file_path: str, status: SyncStatus) -> None: ...

    def list_pending(self) -> list[SyncState]: ...

    def list_by_status(self, status: SyncStatus) -> list[SyncState]: ...

    def status_counts(self) -> StatusCounts: ...
