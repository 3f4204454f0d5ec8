"""Login management and authentication flow."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .browser_auth import DesktopOAuthFlow
from .device_flow import DeviceCodeFlow
from .errors import (
    AuthError,
    AuthorizationDeniedError,
    CallbackTimeoutError,
    ClientIdNotConfiguredError,
    CredentialStoreError,
    DeviceCodeExpiredError,
)
from .keychain import SecureTokenStorage
from .workos_client import DeviceCodeResponse, TokenResponse, WorkOSAuthClient

__all__ = ["LoginManager", "LoginState", "AuthStatus"]

logger = logging.getLogger(__name__)


@dataclass
class LoginState:
    """Result of a login attempt."""

    logged_in: bool = False
    user_email: Optional[str] = None
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class AuthStatus:
    """What is currently stored in the keychain."""

    logged_in: bool = False
    user_email: Optional[str] = None
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    expires_at: Optional[int] = None
    expired: bool = False
    error: Optional[str] = None


def _print_device_code(response: DeviceCodeResponse) -> None:
    print()
    print(f"  Your code: {response.user_code}")
    print()
    print(f"  Open {response.verification_uri} and enter the code,")
    print(f"  or go directly to {response.verification_uri_complete}")
    print()
    print("Waiting for authorization...")


class LoginManager:
    """Manages authentication flow."""

    def __init__(
        self,
        client: WorkOSAuthClient,
        storage: Optional[SecureTokenStorage] = None,
        browser_timeout: Optional[float] = None,
    ):
        """Initialize login manager.

        Args:
            client: WorkOS API client
            storage: Token storage (creates default if None)
            browser_timeout: Seconds to wait for the browser callback
        """
        self.client = client
        self.storage = storage or SecureTokenStorage()
        self.browser_timeout = browser_timeout
        self._on_login_callback: Optional[Callable[[LoginState], None]] = None

    def set_login_callback(self, callback: Callable[[LoginState], None]) -> None:
        """Set callback for successful logins."""
        self._on_login_callback = callback

    def _logged_in(self, token: TokenResponse) -> LoginState:
        state = LoginState(
            logged_in=True,
            user_email=token.user.email,
            user_id=token.user.id,
            organization_id=token.organization_id,
        )
        logger.info(f"Login successful for {token.user.display_name}")
        if self._on_login_callback:
            self._on_login_callback(state)
        return state

    def login_device(
        self, echo: Callable[[DeviceCodeResponse], None] = _print_device_code
    ) -> LoginState:
        """Log in with the device code flow.

        Args:
            echo: Shows the user code and verification URL to the user

        Returns:
            LoginState with result
        """
        flow = DeviceCodeFlow(self.client)
        try:
            token = flow.run(on_code=echo)
            self.storage.store(token.to_record())
        except ClientIdNotConfiguredError as e:
            return LoginState(error=f"{e}. Set WORKOS_CLIENT_ID and try again.")
        except DeviceCodeExpiredError:
            return LoginState(error="Device code expired. Run 'duplex auth login' to try again.")
        except AuthorizationDeniedError:
            return LoginState(error="Authorization was denied.")
        except CredentialStoreError as e:
            return LoginState(error=f"Signed in, but could not save credentials: {e}")
        except AuthError as e:
            logger.error(f"Device login failed: {e}")
            return LoginState(error=f"Login failed: {e}")

        return self._logged_in(token)

    def login_browser(self) -> LoginState:
        """Log in via browser-based OAuth flow.

        Opens the browser to the WorkOS authorize page, waits for the
        loopback callback, then exchanges the code for tokens.

        Security: Uses state parameter (CSRF) and PKCE for secure auth flow.

        Returns:
            LoginState with result
        """
        logger.info("Starting browser auth flow (with PKCE)...")
        try:
            with DesktopOAuthFlow(self.client, self.storage) as flow:
                token = flow.run(timeout=self.browser_timeout)
        except ClientIdNotConfiguredError as e:
            return LoginState(error=f"{e}. Set WORKOS_CLIENT_ID and try again.")
        except CallbackTimeoutError:
            return LoginState(error="Authorization was cancelled or timed out")
        except CredentialStoreError as e:
            return LoginState(error=f"Signed in, but could not save credentials: {e}")
        except AuthError as e:
            logger.error(f"Browser login failed: {e}")
            return LoginState(error=f"Login failed: {e}")

        return self._logged_in(token)

    def logout(self) -> bool:
        """Remove stored tokens.

        Returns:
            True if successful
        """
        try:
            self.storage.clear()
        except CredentialStoreError as e:
            logger.warning(f"Failed to clear tokens: {e}")
            return False
        logger.info("Logged out")
        return True

    def status(self, now: Optional[float] = None) -> AuthStatus:
        """Describe the stored credentials."""
        try:
            record = self.storage.get()
        except CredentialStoreError as e:
            return AuthStatus(error=str(e))

        if record is None:
            return AuthStatus()

        if now is None:
            now = time.time()
        return AuthStatus(
            logged_in=True,
            user_email=record.email,
            user_id=record.user_id,
            organization_id=record.organization_id,
            expires_at=record.expires_at,
            expired=record.is_expired(now=now),
        )
