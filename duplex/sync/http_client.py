"""Base HTTP client with retry logic for the Duplex API."""

import logging
from typing import Optional

import requests

from ..auth.errors import NotAuthenticatedError
from .retry import RetryConfig, RetryExhausted, retry_with_backoff

__all__ = [
    "BaseApiClient",
    "DuplexClientError",
    "DuplexAuthError",
]

logger = logging.getLogger(__name__)


class DuplexClientError(Exception):
    """Duplex API request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class DuplexAuthError(DuplexClientError, NotAuthenticatedError):
    """Server rejected the credential (401)."""

    pass


class _TransientError(Exception):
    """Internal: Marks an error as transient/retryable."""

    pass


class BaseApiClient:
    """HTTP plumbing shared by Duplex API clients.

    Handles:
    - Session management
    - Bearer authentication headers
    - Retry with exponential backoff on connection errors, timeouts and 5xx
    - Mapping of error responses to DuplexClientError / DuplexAuthError
    """

    DEFAULT_RETRY_CONFIG = RetryConfig(max_retries=3, base_delay=1.0, max_delay=30.0)

    USER_AGENT = "Duplex-Sync/0.1.0"

    def __init__(
        self,
        api_url: str,
        timeout: int = 30,
        retry_config: Optional[RetryConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        """Initialize base API client.

        Args:
            api_url: Duplex API base URL
            timeout: Request timeout in seconds
            retry_config: Configuration for retry with exponential backoff
            session: Optional requests session (for dependency injection/testing)
        """
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.retry_config = retry_config or self.DEFAULT_RETRY_CONFIG
        self._session = session or requests.Session()
        self._owns_session = session is None

    def _get_headers(self, token: Optional[str] = None) -> dict:
        headers = {
            "Accept": "application/json",
            "User-Agent": self.USER_AGENT,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text.strip()
        if isinstance(body, dict):
            return str(body.get("message") or body.get("error") or "")
        return ""

    def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[dict] = None,
        token: Optional[str] = None,
        retry: bool = True,
    ) -> dict:
        """Make a request to the Duplex API.

        Args:
            method: HTTP method
            endpoint: API endpoint (relative to api_url)
            data: JSON request body
            token: Bearer token, or None to send no Authorization header
            retry: Whether to retry on transient failures

        Returns:
            Response data as dict

        Raises:
            DuplexAuthError: For 401 responses (not retried)
            DuplexClientError: For other errors
        """
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        kwargs: dict = {"timeout": self.timeout, "headers": self._get_headers(token)}
        if data is not None:
            kwargs["json"] = data

        def do_request() -> dict:
            try:
                response = self._session.request(method, url, **kwargs)
            except requests.exceptions.ConnectionError as e:
                raise _TransientError("Cannot connect to Duplex API") from e
            except requests.exceptions.Timeout as e:
                raise _TransientError("Request timed out") from e

            if response.status_code == 401:
                raise DuplexAuthError(
                    "Not authenticated - run 'duplex auth login'", status_code=401
                )
            if response.status_code == 403:
                raise DuplexClientError("Access denied for this account", status_code=403)

            # Server errors (5xx) are retryable
            if response.status_code >= 500:
                raise _TransientError(f"Server error: {response.status_code}")

            if not response.ok:
                detail = self._error_message(response)
                raise DuplexClientError(
                    f"API error ({response.status_code}): {detail or response.reason}",
                    status_code=response.status_code,
                )

            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                raise DuplexClientError("API returned invalid JSON") from e

        if not retry:
            try:
                return do_request()
            except _TransientError as e:
                raise DuplexClientError(str(e)) from e

        try:
            return retry_with_backoff(
                do_request,
                config=self.retry_config,
                retryable_exceptions=(_TransientError,),
            )
        except RetryExhausted as e:
            if e.last_error:
                raise DuplexClientError(str(e.last_error)) from e.last_error
            raise DuplexClientError("Request failed after retries") from e

    def close(self) -> None:
        """Close the session if we own it."""
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None

    def __del__(self) -> None:
        try:
            self.close()
        except Exception:
            pass

    def __enter__(self) -> "BaseApiClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
