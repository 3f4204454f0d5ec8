"""Background token refresh.

Keeps the stored access token valid by refreshing it shortly before it
expires. A failed refresh never deletes the stored tokens: the access token
may still work, and the next tick gets another chance.
"""

import logging
import threading
import time
from typing import Callable, Optional

from ..config import DEFAULT_REFRESH_BUFFER, DEFAULT_TOKEN_CHECK_INTERVAL
from .errors import AuthError, NotAuthenticatedError, TokenExpiredError
from .keychain import SecureTokenStorage, TokenRecord
from .workos_client import WorkOSAuthClient

__all__ = ["TokenManager"]

logger = logging.getLogger(__name__)


class TokenManager:
    """Owns the token lifecycle: storage access, expiry checks and refresh."""

    def __init__(
        self,
        storage: SecureTokenStorage,
        client: WorkOSAuthClient,
        check_interval: float = DEFAULT_TOKEN_CHECK_INTERVAL,
        refresh_buffer: float = DEFAULT_REFRESH_BUFFER,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the token manager.

        Args:
            storage: Keychain-backed token storage
            client: WorkOS client used for refresh_token grants
            check_interval: Seconds between background checks
            refresh_buffer: Refresh when the token expires within this many seconds
            clock: Wall clock returning epoch seconds
        """
        self.storage = storage
        self.client = client
        self.check_interval = check_interval
        self.refresh_buffer = refresh_buffer
        self._clock = clock
        self._running = threading.Event()
        self._wakeup = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._refresh_lock = threading.Lock()

    # -- token access ------------------------------------------------------

    def needs_refresh(self, record: TokenRecord, now: Optional[float] = None) -> bool:
        """True when `expires_at <= now + refresh_buffer`."""
        if now is None:
            now = self._clock()
        return record.needs_refresh(self.refresh_buffer, now=now)

    def is_authenticated(self) -> bool:
        return self.storage.has_tokens()

    def store_tokens(self, record: TokenRecord) -> None:
        self.storage.store(record)

    def clear_tokens(self) -> None:
        self.storage.clear()

    def get_valid_token(self) -> str:
        """Return a usable access token, refreshing it first if needed.

        Raises:
            NotAuthenticatedError: No tokens stored
            TokenExpiredError: Token is past expiry and refresh failed
        """
        record = self.storage.get()
        if record is None:
            raise NotAuthenticatedError()

        if not self.needs_refresh(record):
            return record.access_token

        logger.info("Access token expiring, refreshing before use")
        try:
            return self._refresh(record).access_token
        except AuthError as e:
            if not record.is_expired(now=self._clock()):
                logger.warning(f"Refresh failed, using current token until expiry: {e}")
                return record.access_token
            raise TokenExpiredError(f"Token expired and refresh failed: {e}") from e

    # -- refresh -----------------------------------------------------------

    def _refresh(self, record: TokenRecord) -> TokenRecord:
        """Exchange the refresh token and replace the stored record.

        The stored record is only touched after the exchange succeeds.
        """
        with self._refresh_lock:
            # Another caller may have refreshed while we waited
            current = self.storage.get()
            if current is not None and current.access_token != record.access_token:
                if not self.needs_refresh(current):
                    return current
                record = current

            response = self.client.refresh(record.refresh_token)
            new_record = response.to_record(now=self._clock())
            # Keep identity details if the refresh response omits them
            new_record.email = new_record.email or record.email
            new_record.organization_id = new_record.organization_id or record.organization_id
            self.storage.store(new_record)
            return new_record

    def check_and_refresh(self) -> bool:
        """Run one tick of the refresh loop.

        Returns:
            True if the token was refreshed
        """
        try:
            record = self.storage.get()
        except AuthError as e:
            logger.error(f"Failed to read tokens: {e}")
            return False

        if record is None:
            logger.debug("No tokens to refresh")
            return False

        now = self._clock()
        if not self.needs_refresh(record, now=now):
            logger.debug(f"Token still valid for {record.seconds_remaining(now)} seconds")
            return False

        logger.info("Token expiring soon, refreshing...")
        try:
            self._refresh(record)
        except AuthError as e:
            # Keep the existing tokens - they may still work, or a later tick may succeed
            logger.error(f"Failed to refresh token: {e}")
            return False

        logger.info("Token refreshed successfully")
        return True

    # -- background loop ---------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    def start(self) -> None:
        """Start the background refresh thread."""
        if self._running.is_set():
            return
        self._running.set()
        self._wakeup.clear()
        self._thread = threading.Thread(target=self._run, name="token-refresh", daemon=True)
        self._thread.start()
        logger.info(f"Token manager started (interval: {self.check_interval}s)")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background thread and wait for it to exit."""
        if not self._running.is_set():
            return
        self._running.clear()
        self._wakeup.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Token manager stopped")

    def _run(self) -> None:
        # Check immediately, then every check_interval
        while self._running.is_set():
            try:
                self.check_and_refresh()
            except Exception:
                logger.exception("Unexpected error in token refresh loop")
            self._wakeup.wait(self.check_interval)
