"""Tests for PKCE code generation."""

import base64
import hashlib

from duplex.auth.pkce import CHALLENGE_METHOD, PkceChallenge, compute_code_challenge


class TestPkceChallenge:
    """Tests for PkceChallenge.generate."""

    def test_verifier_length(self):
        """32 random bytes encode to 43 base64url characters."""
        pkce = PkceChallenge.generate()

        assert len(pkce.verifier) == 43

    def test_challenge_is_sha256_of_verifier(self):
        """Challenge is BASE64URL(SHA256(verifier)) without padding."""
        pkce = PkceChallenge.generate()

        digest = hashlib.sha256(pkce.verifier.encode("ascii")).digest()
        expected = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

        assert pkce.challenge == expected
        assert len(pkce.challenge) == 43

    def test_pairs_are_unique(self):
        """Each call generates fresh values."""
        first = PkceChallenge.generate()
        second = PkceChallenge.generate()

        assert first.verifier != second.verifier
        assert first.challenge != second.challenge

    def test_url_safe(self):
        """No +, / or = in either value."""
        pkce = PkceChallenge.generate()

        for char in ["+", "/", "="]:
            assert char not in pkce.verifier
            assert char not in pkce.challenge

    def test_method_is_s256(self):
        assert CHALLENGE_METHOD == "S256"


class TestComputeCodeChallenge:
    """Tests for the S256 derivation."""

    def test_rfc7636_example(self):
        """Appendix B of RFC 7636."""
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"

        assert compute_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_deterministic(self):
        assert compute_code_challenge("abc") == compute_code_challenge("abc")
