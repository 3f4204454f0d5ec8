"""Secure token storage using the system keychain."""

import json
import logging
import threading
import time
from dataclasses import dataclass, asdict
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from .errors import CredentialStoreError

__all__ = ["SecureTokenStorage", "TokenRecord"]

logger = logging.getLogger(__name__)

SERVICE_NAME = "duplex"
ACCOUNT_NAME = "oauth_tokens"


@dataclass
class TokenRecord:
    """OAuth token pair plus absolute expiry (epoch seconds)."""

    access_token: str
    refresh_token: str
    expires_at: int
    user_id: Optional[str] = None
    email: Optional[str] = None
    organization_id: Optional[str] = None

    def needs_refresh(self, buffer_seconds: float = 60, now: Optional[float] = None) -> bool:
        """True when the token expires within `buffer_seconds` of `now`."""
        if now is None:
            now = time.time()
        return self.expires_at <= now + buffer_seconds

    def is_expired(self, now: Optional[float] = None) -> bool:
        """True once `expires_at` has actually passed."""
        if now is None:
            now = time.time()
        return self.expires_at <= now

    def seconds_remaining(self, now: Optional[float] = None) -> int:
        if now is None:
            now = time.time()
        return max(0, int(self.expires_at - now))

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, data: str) -> "TokenRecord":
        parsed = json.loads(data)
        return cls(
            access_token=parsed["access_token"],
            refresh_token=parsed["refresh_token"],
            expires_at=int(parsed["expires_at"]),
            user_id=parsed.get("user_id"),
            email=parsed.get("email"),
            organization_id=parsed.get("organization_id"),
        )


class SecureTokenStorage:
    """Keyring-backed store holding a single TokenRecord.

    The whole record is written as one keyring entry, so readers never see
    half of a refresh. A lock serializes access between the refresh thread
    and the sync engine.
    """

    def __init__(self, service_name: str = SERVICE_NAME):
        """Initialize token storage.

        Args:
            service_name: Service name for keychain entries
        """
        self.service_name = service_name
        self._lock = threading.Lock()

    def store(self, record: TokenRecord) -> None:
        """Store (or replace) the token record.

        Raises:
            CredentialStoreError: If the keychain rejects the write
        """
        with self._lock:
            try:
                keyring.set_password(self.service_name, ACCOUNT_NAME, record.to_json())
            except KeyringError as e:
                logger.error(f"Failed to store tokens: {e}")
                raise CredentialStoreError(f"Failed to store tokens: {e}") from e
        logger.info(f"Tokens stored for {record.email or record.user_id or 'user'}")

    def get(self) -> Optional[TokenRecord]:
        """Load the token record.

        Returns:
            TokenRecord if present, None when not signed in

        Raises:
            CredentialStoreError: If the keychain is unavailable
        """
        with self._lock:
            try:
                data = keyring.get_password(self.service_name, ACCOUNT_NAME)
            except KeyringError as e:
                logger.error(f"Failed to load tokens: {e}")
                raise CredentialStoreError(f"Failed to load tokens: {e}") from e

        if not data:
            return None
        try:
            return TokenRecord.from_json(data)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Invalid token record format: {e}")
            return None

    def clear(self) -> None:
        """Delete the stored record (no-op if there is none)."""
        with self._lock:
            try:
                keyring.delete_password(self.service_name, ACCOUNT_NAME)
                logger.info("Tokens deleted")
            except PasswordDeleteError:
                # Nothing stored
                pass
            except KeyringError as e:
                logger.error(f"Failed to delete tokens: {e}")
                raise CredentialStoreError(f"Failed to delete tokens: {e}") from e

    def has_tokens(self) -> bool:
        """Check if a token record is stored."""
        try:
            return self.get() is not None
        except CredentialStoreError:
            return False
