"""PKCE (Proof Key for Code Exchange) utilities.

RFC 7636: https://www.rfc-editor.org/rfc/rfc7636

PKCE protects public clients (like this desktop agent) from authorization code
interception attacks by binding the code to a locally held secret.

Flow:
1. Client generates code_verifier (secret) and code_challenge (derived)
2. Client sends code_challenge with the authorization request
3. Provider stores code_challenge with the authorization code
4. Client sends code_verifier with the token exchange request
5. Provider verifies BASE64URL(SHA256(code_verifier)) == code_challenge
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass

__all__ = ["PkceChallenge", "compute_code_challenge", "CHALLENGE_METHOD"]

CHALLENGE_METHOD = "S256"

# 32 random bytes -> 43 base64url characters
VERIFIER_BYTES = 32


@dataclass(frozen=True)
class PkceChallenge:
    """A verifier/challenge pair for one authentication attempt."""

    verifier: str
    challenge: str

    @classmethod
    def generate(cls) -> "PkceChallenge":
        """Generate a fresh PKCE pair.

        The verifier is 32 cryptographically random bytes, base64url encoded
        without padding. The challenge is derived from it with S256.

        Example:
            >>> pkce = PkceChallenge.generate()
            >>> len(pkce.verifier), len(pkce.challenge)
            (43, 43)
        """
        verifier = secrets.token_urlsafe(VERIFIER_BYTES)
        return cls(verifier=verifier, challenge=compute_code_challenge(verifier))


def compute_code_challenge(code_verifier: str) -> str:
    """Compute code_challenge from code_verifier using the S256 method.

    code_challenge = BASE64URL(SHA256(code_verifier))

    Args:
        code_verifier: The PKCE code verifier string

    Returns:
        Base64URL-encoded SHA256 hash without padding
    """
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
