"""Authentication error types."""

from typing import Optional

__all__ = [
    "AuthError",
    "AuthTransportError",
    "MalformedResponseError",
    "OAuthProviderError",
    "DeviceCodeExpiredError",
    "AuthorizationDeniedError",
    "NotAuthenticatedError",
    "TokenExpiredError",
    "ClientIdNotConfiguredError",
    "CredentialStoreError",
    "OAuthError",
    "AuthorizationFailedError",
    "CallbackTimeoutError",
    "StateMismatchError",
    "OAuthNotStartedError",
]


class AuthError(Exception):
    """Base class for authentication errors."""

    pass


class AuthTransportError(AuthError):
    """Network failure talking to the identity provider."""

    pass


class MalformedResponseError(AuthError):
    """Provider returned a payload we could not decode."""

    pass


class OAuthProviderError(AuthError):
    """Error reported by the provider in an `{error, error_description}` body."""

    def __init__(self, code: str, description: Optional[str] = None):
        self.code = code
        self.description = description
        message = f"{code}: {description}" if description else code
        super().__init__(message)


class DeviceCodeExpiredError(OAuthProviderError):
    """Device code flow expired before the user finished."""

    def __init__(self, description: Optional[str] = None):
        super().__init__("expired_token", description or "Device code flow expired")


class AuthorizationDeniedError(OAuthProviderError):
    """User declined the authorization request."""

    def __init__(self, description: Optional[str] = None):
        super().__init__("access_denied", description or "Authorization denied")


class NotAuthenticatedError(AuthError):
    """No usable credential - the user needs to sign in."""

    def __init__(self, message: str = "Not authenticated - run 'duplex auth login'"):
        super().__init__(message)


class TokenExpiredError(AuthError):
    """Access token expired and could not be refreshed."""

    pass


class ClientIdNotConfiguredError(AuthError):
    """WorkOS client ID is missing from both environment and config."""

    def __init__(self):
        super().__init__("WorkOS client ID not configured (set WORKOS_CLIENT_ID)")


class CredentialStoreError(AuthError):
    """The secure credential store could not be read or written."""

    pass


class OAuthError(AuthError):
    """Failure in the interactive browser (PKCE) flow."""

    pass


class AuthorizationFailedError(OAuthError):
    """Provider redirected back to the callback with an error."""

    def __init__(self, error: str, description: Optional[str] = None):
        self.error = error
        self.description = description
        super().__init__(f"{error}: {description or 'Unknown error'}")


class CallbackTimeoutError(OAuthError):
    """No callback arrived before the wait timed out."""

    pass


class StateMismatchError(OAuthError):
    """Callback state did not match the one we sent (possible CSRF)."""

    pass


class OAuthNotStartedError(OAuthError):
    """complete() was called before start()."""

    pass
