"""WorkOS user-management API client.

Covers the three endpoints the agent needs:
- device authorization (`/user_management/authorize/device`)
- token issuance (`/user_management/authenticate`) for the device_code,
  refresh_token and authorization_code grants
- the browser authorize URL (`/user_management/authorize`)
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import requests

from ..config import DEFAULT_WORKOS_API_URL
from .errors import (
    AuthTransportError,
    ClientIdNotConfiguredError,
    MalformedResponseError,
    OAuthProviderError,
)
from .keychain import TokenRecord
from .pkce import CHALLENGE_METHOD

__all__ = [
    "WorkOSAuthClient",
    "DeviceCodeResponse",
    "TokenResponse",
    "WorkOSUser",
    "DEVICE_CODE_GRANT",
]

logger = logging.getLogger(__name__)

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"
REFRESH_TOKEN_GRANT = "refresh_token"
AUTHORIZATION_CODE_GRANT = "authorization_code"


@dataclass
class DeviceCodeResponse:
    """Response from the device authorization endpoint."""

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str
    expires_in: int
    interval: int

    @classmethod
    def from_dict(cls, data: dict) -> "DeviceCodeResponse":
        try:
            return cls(
                device_code=data["device_code"],
                user_code=data["user_code"],
                verification_uri=data["verification_uri"],
                verification_uri_complete=data.get(
                    "verification_uri_complete", data["verification_uri"]
                ),
                expires_in=int(data["expires_in"]),
                interval=int(data.get("interval", 5)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"Invalid device authorization response: {e}") from e


@dataclass
class WorkOSUser:
    """User info returned alongside tokens."""

    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.email or self.id


@dataclass
class TokenResponse:
    """Successful token endpoint response."""

    access_token: str
    refresh_token: str
    expires_in: int
    user: WorkOSUser
    organization_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "TokenResponse":
        try:
            user = data.get("user") or {}
            return cls(
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                expires_in=int(data["expires_in"]),
                user=WorkOSUser(
                    id=user["id"],
                    email=user.get("email"),
                    first_name=user.get("first_name"),
                    last_name=user.get("last_name"),
                ),
                organization_id=data.get("organization_id"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"Invalid token response: {e}") from e

    def to_record(self, now: Optional[float] = None) -> TokenRecord:
        """Convert to a storable record with an absolute expiry."""
        if now is None:
            now = time.time()
        return TokenRecord(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=int(now) + self.expires_in,
            user_id=self.user.id,
            email=self.user.email,
            organization_id=self.organization_id,
        )


class WorkOSAuthClient:
    """Form-encoded OAuth calls against WorkOS."""

    USER_AGENT = "Duplex-Sync/0.1.0"

    def __init__(
        self,
        client_id: Optional[str],
        api_url: str = DEFAULT_WORKOS_API_URL,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the auth client.

        Args:
            client_id: WorkOS client ID (None means not configured)
            api_url: WorkOS API base URL
            timeout: Request timeout in seconds
            session: Optional requests session (for dependency injection/testing)
        """
        self._client_id = client_id
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def client_id(self) -> str:
        """Configured client ID.

        Raises:
            ClientIdNotConfiguredError: If no client ID was supplied
        """
        if not self._client_id:
            raise ClientIdNotConfiguredError()
        return self._client_id

    def _post_form(self, endpoint: str, form: dict) -> dict:
        """POST a form and return the decoded JSON body.

        Raises:
            AuthTransportError: Network failure or timeout
            OAuthProviderError: Non-2xx response with an OAuth error body
            MalformedResponseError: Body is not the JSON we expect
        """
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        headers = {
            "Accept": "application/json",
            "User-Agent": self.USER_AGENT,
        }
        try:
            response = self._session.post(url, data=form, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise AuthTransportError("Request to identity provider timed out") from e
        except requests.exceptions.RequestException as e:
            raise AuthTransportError(f"Cannot connect to identity provider: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            if response.ok:
                raise MalformedResponseError("Identity provider returned invalid JSON") from e
            raise OAuthProviderError(
                "http_error", f"HTTP {response.status_code}"
            ) from e

        if not response.ok:
            if not isinstance(body, dict) or "error" not in body:
                raise OAuthProviderError("http_error", f"HTTP {response.status_code}")
            raise OAuthProviderError(body["error"], body.get("error_description"))

        if not isinstance(body, dict):
            raise MalformedResponseError("Identity provider returned a non-object body")
        return body

    def start_device_authorization(self) -> DeviceCodeResponse:
        """Begin the device code flow."""
        body = self._post_form(
            "user_management/authorize/device",
            {"client_id": self.client_id},
        )
        return DeviceCodeResponse.from_dict(body)

    def authenticate(self, grant_type: str, **fields: str) -> TokenResponse:
        """Call the token endpoint with the given grant."""
        form = {"client_id": self.client_id, "grant_type": grant_type}
        form.update(fields)
        body = self._post_form("user_management/authenticate", form)
        return TokenResponse.from_dict(body)

    def request_device_token(self, device_code: str) -> TokenResponse:
        return self.authenticate(DEVICE_CODE_GRANT, device_code=device_code)

    def refresh(self, refresh_token: str) -> TokenResponse:
        return self.authenticate(REFRESH_TOKEN_GRANT, refresh_token=refresh_token)

    def exchange_code(self, code: str, code_verifier: str) -> TokenResponse:
        return self.authenticate(
            AUTHORIZATION_CODE_GRANT, code=code, code_verifier=code_verifier
        )

    def authorize_url(
        self, redirect_uri: str, code_challenge: str, state: Optional[str] = None
    ) -> str:
        """Build the browser authorization URL for the PKCE flow."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "code_challenge": code_challenge,
            "code_challenge_method": CHALLENGE_METHOD,
        }
        if state:
            params["state"] = state
        return f"{self.api_url}/user_management/authorize?{urlencode(params)}"

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "WorkOSAuthClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
