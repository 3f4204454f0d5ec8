"""Sync engine - moves changed conversation files to the Duplex API.

Change detection is content-addressed: a file is queued only when the SHA-256
of its bytes differs from the hash last recorded for it. Queued items are
uploaded in FIFO order, and each upload walks the record through
pending -> syncing -> complete (or error).
"""

import hashlib
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from ..auth.errors import AuthError, ClientIdNotConfiguredError, NotAuthenticatedError
from ..config import DEFAULT_WORKSPACE_ID
from ..parsers import ParserRegistry
from .protocols import SyncStateStoreProtocol, TokenProviderProtocol, UploadClientProtocol
from .state import StateStoreError, StatusCounts, SyncError, SyncStatus
from .watcher import FileChangeEvent

__all__ = [
    "SyncEngine",
    "SyncItem",
    "SyncError",
    "UnknownParserError",
    "StateStoreError",
    "compute_hash",
]

logger = logging.getLogger(__name__)


class UnknownParserError(SyncError):
    """Queue item names a parser that is not registered."""

    def __init__(self, parser_name: str):
        self.parser_name = parser_name
        super().__init__(f"No parser registered for '{parser_name}'")


def compute_hash(content: Union[bytes, str]) -> str:
    """Hex SHA-256 of `content` (str is hashed as UTF-8)."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


@dataclass
class SyncItem:
    """A file waiting to be uploaded."""

    path: Path
    parser_name: str
    content_hash: str


class SyncEngine:
    """Queues changed files and uploads them one at a time."""

    def __init__(
        self,
        store: SyncStateStoreProtocol,
        registry: ParserRegistry,
        client: UploadClientProtocol,
        token_provider: Optional[TokenProviderProtocol] = None,
        fallback_token: Optional[str] = None,
        workspace_id: str = DEFAULT_WORKSPACE_ID,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the engine.

        Args:
            store: Persisted sync state
            registry: Parsers used to read queued files
            client: Upload client for the extraction endpoint
            token_provider: Source of fresh access tokens (normally the TokenManager)
            fallback_token: Static token used when the provider has none
            workspace_id: Workspace uploads are filed under
            clock: Wall clock returning epoch seconds
        """
        self.store = store
        self.registry = registry
        self.client = client
        self.token_provider = token_provider
        self.fallback_token = fallback_token
        self.workspace_id = workspace_id
        self._clock = clock
        self._queue: deque[SyncItem] = deque()
        # Guards the queue and state mutations
        self._lock = threading.RLock()
        # Serializes uploads
        self._process_lock = threading.Lock()

    def queue_len(self) -> int:
        with self._lock:
            return len(self._queue)

    def status_counts(self) -> StatusCounts:
        return self.store.status_counts()

    def handle_file_change(self, event: FileChangeEvent) -> bool:
        """Queue the file if its content changed.

        Returns:
            True if the file was queued, False if its content is unchanged

        Raises:
            OSError: The file could not be read
        """
        path = Path(event.path)
        content_hash = compute_hash(path.read_bytes())
        key = str(path)

        with self._lock:
            existing = self.store.get(key)
            if existing is not None and existing.content_hash == content_hash:
                logger.debug(f"File unchanged, skipping: {path}")
                return False

            self.store.mark_pending(key, content_hash, int(self._clock()))
            self._queue.append(
                SyncItem(path=path, parser_name=event.parser_name, content_hash=content_hash)
            )

        logger.info(f"Queued for sync: {path}")
        return True

    def _resolve_token(self) -> Optional[str]:
        """Token for the next upload: provider first, then the fallback."""
        if self.token_provider is not None:
            try:
                return self.token_provider.get_valid_token()
            except (NotAuthenticatedError, ClientIdNotConfiguredError) as e:
                logger.debug(f"No signed-in token ({e}), trying fallback")
            except AuthError as e:
                logger.warning(f"Failed to get valid token: {e}")

        if self.fallback_token:
            return self.fallback_token

        logger.warning("No authentication token available, request may fail")
        return None

    def process_next(self) -> Optional[str]:
        """Upload the item at the head of the queue.

        Returns:
            The workflow id, or None if the queue was empty or the item was
            superseded by a newer change

        Raises:
            UnknownParserError: Item's parser is not registered
            NotAuthenticatedError: Server rejected the credential
            Exception: Any other parse or upload failure, after the record
                is marked error
        """
        with self._process_lock:
            with self._lock:
                if not self._queue:
                    return None
                item = self._queue.popleft()
                key = str(item.path)

                current = self.store.get(key)
                if current is None or current.content_hash != item.content_hash:
                    logger.debug(f"Skipping superseded queue item: {item.path}")
                    return None
                self.store.mark_syncing(key, item.content_hash)

            logger.info(f"Syncing: {item.path}")
            try:
                parser = self.registry.get(item.parser_name)
                if parser is None:
                    raise UnknownParserError(item.parser_name)
                conversation = parser.parse(item.path)
                uploaded_hash = compute_hash(conversation.content)
                response = self.client.upload_conversation(
                    conversation,
                    workspace_id=self.workspace_id,
                    token=self._resolve_token(),
                )
            except Exception as e:
                self._mark_failed(item)
                logger.error(f"Sync failed: {item.path} - {e}")
                raise

            with self._lock:
                if not self.store.mark_complete(
                    key, response.workflow_id, content_hash=uploaded_hash
                ):
                    # Newer content arrived while uploading; it still has to sync
                    current = self.store.get(key)
                    if current is not None and current.status == SyncStatus.SYNCING:
                        self.store.update_status(key, SyncStatus.PENDING)
                    logger.info(f"{item.path} changed during upload, left pending")
                    return response.workflow_id

            logger.info(f"Sync complete: {item.path} -> workflow {response.workflow_id}")
            return response.workflow_id

    def _mark_failed(self, item: SyncItem) -> None:
        key = str(item.path)
        try:
            with self._lock:
                current = self.store.get(key)
                # Don't clobber a newer change that is already queued
                if current is not None and current.content_hash == item.content_hash:
                    self.store.update_status(key, SyncStatus.ERROR)
        except StateStoreError as e:
            logger.error(f"Failed to record sync error for {item.path}: {e}")

    def process_all(self) -> int:
        """Drain the queue.

        Returns:
            Number of items uploaded successfully
        """
        count = 0
        while self.queue_len() > 0:
            try:
                if self.process_next() is not None:
                    count += 1
            except Exception as e:
                logger.error(f"Error processing sync item: {e}")
        return count

    def recover(self, resolve_parser: Callable[[str], Optional[str]]) -> int:
        """Re-queue work left unfinished by a previous run.

        Pending records are re-queued. Syncing records have an unknown
        outcome, so they are treated as pending. Either way, a file whose
        content changed since goes through normal change detection, and a
        file that is gone is marked error.

        Args:
            resolve_parser: Maps a file path to the parser that owns it

        Returns:
            Number of items queued
        """
        records = self.store.list_by_status(SyncStatus.PENDING)
        records += self.store.list_by_status(SyncStatus.SYNCING)
        records.sort(key=lambda state: state.last_modified_at)

        queued = 0
        for state in records:
            path = Path(state.file_path)
            parser_name = resolve_parser(state.file_path)
            if parser_name is None:
                logger.warning(f"No watched directory owns {path}, marking error")
                self.store.update_status(state.file_path, SyncStatus.ERROR)
                continue

            try:
                content_hash = compute_hash(path.read_bytes())
            except OSError as e:
                logger.warning(f"Cannot read {path} during recovery: {e}")
                self.store.update_status(state.file_path, SyncStatus.ERROR)
                continue

            if content_hash != state.content_hash:
                if self.handle_file_change(FileChangeEvent(path=path, parser_name=parser_name)):
                    queued += 1
                continue

            with self._lock:
                if state.status != SyncStatus.PENDING:
                    self.store.update_status(state.file_path, SyncStatus.PENDING)
                self._queue.append(
                    SyncItem(path=path, parser_name=parser_name, content_hash=content_hash)
                )
            queued += 1

        if queued:
            logger.info(f"Recovered {queued} unsynced files")
        return queued
