"""Auth module - OAuth sign-in, token refresh and secure credential storage."""

from .browser_auth import DesktopOAuthFlow
from .device_flow import DeviceCodeFlow
from .keychain import SecureTokenStorage, TokenRecord
from .login import AuthStatus, LoginManager, LoginState
from .pkce import PkceChallenge
from .token_manager import TokenManager
from .workos_client import WorkOSAuthClient

__all__ = [
    "AuthStatus",
    "DesktopOAuthFlow",
    "DeviceCodeFlow",
    "LoginManager",
    "LoginState",
    "PkceChallenge",
    "SecureTokenStorage",
    "TokenManager",
    "TokenRecord",
    "WorkOSAuthClient",
]
