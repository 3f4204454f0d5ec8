"""Browser-based OAuth authorization flow (desktop sign-in).

Opens the user's browser to the WorkOS authorize page. A local HTTP server
receives the callback with the authorization code, which is exchanged for
tokens and stored in the keychain.

Security features:
- PKCE (Proof Key for Code Exchange) for public client security
- State parameter (CSRF protection) when the provider echoes it back
"""

import logging
import secrets
import webbrowser
from typing import Optional

from .callback_server import LoopbackServer
from .errors import OAuthNotStartedError, StateMismatchError
from .keychain import SecureTokenStorage
from .pkce import PkceChallenge
from .workos_client import TokenResponse, WorkOSAuthClient

__all__ = ["DesktopOAuthFlow"]

logger = logging.getLogger(__name__)


class DesktopOAuthFlow:
    """Manages one PKCE authorization attempt.

    Flow:
    1. Generate the PKCE pair and a state value
    2. Start a loopback server on a random port
    3. Build the authorize URL and open it in the browser
    4. Wait for the callback with the authorization code
    5. Exchange code + verifier for tokens and store them

    The loopback socket is released when the flow is closed or discarded,
    whether or not a callback ever arrived.
    """

    TIMEOUT_SECONDS = 300  # 5 minutes

    def __init__(self, client: WorkOSAuthClient, storage: SecureTokenStorage):
        self.client = client
        self.storage = storage
        self.pkce = PkceChallenge.generate()
        self.state = secrets.token_urlsafe(32)
        self._server: Optional[LoopbackServer] = None
        self._auth_url: Optional[str] = None

    @property
    def auth_url(self) -> Optional[str]:
        """Authorization URL to open, available after start()."""
        return self._auth_url

    @property
    def redirect_uri(self) -> Optional[str]:
        return self._server.redirect_uri if self._server else None

    def start(self) -> str:
        """Start the loopback server and build the authorization URL.

        Returns:
            The authorization URL
        """
        # Resolve client ID before binding so a misconfiguration leaks nothing
        self.client.client_id
        self.close()
        self._server = LoopbackServer()
        self._auth_url = self.client.authorize_url(
            redirect_uri=self._server.redirect_uri,
            code_challenge=self.pkce.challenge,
            state=self.state,
        )
        logger.info("OAuth flow started, waiting for callback on loopback server")
        return self._auth_url

    def open_browser(self) -> bool:
        """Open the authorization URL in the default browser."""
        if self._auth_url is None:
            raise OAuthNotStartedError("OAuth flow not started")
        logger.info("Opening browser for authorization")
        return webbrowser.open(self._auth_url)

    def complete(self, timeout: Optional[float] = None) -> TokenResponse:
        """Wait for the callback, exchange the code and store the tokens.

        Args:
            timeout: Seconds to wait for the callback (default TIMEOUT_SECONDS)

        Returns:
            TokenResponse from the code exchange

        Raises:
            OAuthNotStartedError: start() was not called
            AuthorizationFailedError: Provider redirected with an error
            CallbackTimeoutError: No callback in time
            StateMismatchError: Callback state did not match
            AuthError: Code exchange or storage failed
        """
        if self._server is None:
            raise OAuthNotStartedError("OAuth flow not started")

        if timeout is None:
            timeout = self.TIMEOUT_SECONDS
        try:
            callback = self._server.wait_for_callback(timeout=timeout)
        finally:
            self.close()

        if callback.state is not None and callback.state != self.state:
            logger.warning("State parameter mismatch - possible CSRF attempt")
            raise StateMismatchError("State parameter mismatch")

        logger.info("Received authorization code, exchanging for tokens")
        token = self.client.exchange_code(callback.code, self.pkce.verifier)
        self.storage.store(token.to_record())
        logger.info(f"OAuth flow completed for {token.user.display_name}")
        return token

    def run(self, timeout: Optional[float] = None) -> TokenResponse:
        """Start, open the browser, and wait for completion."""
        try:
            self.start()
            self.open_browser()
            return self.complete(timeout=timeout)
        finally:
            self.close()

    def close(self) -> None:
        """Release the loopback listener, if any."""
        if self._server is not None:
            server, self._server = self._server, None
            server.close()

    def __enter__(self) -> "DesktopOAuthFlow":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __del__(self) -> None:
        try:
            self.close()
        except Exception:
            pass
