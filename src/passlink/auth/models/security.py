"""Security-related models for the authorization code flow.

Contains the PKCE pair and the transient per-login authorization state.
"""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass, field

AUTHORIZATION_STATE_TTL_SECONDS = 600


def compute_code_challenge(code_verifier: str) -> str:
    """BASE64URL-ENCODE(SHA256(ASCII(code_verifier))) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


@dataclass(frozen=True)
class PKCEPair:
    """PKCE (Proof Key for Code Exchange) parameters (RFC 7636).

    The challenge is a pure function of the verifier. The verifier never
    leaves the server except inside a sealed transient token.
    """

    code_verifier: str = field(repr=False)
    code_challenge: str = field()
    method: str = field(default="S256")

    def __post_init__(self) -> None:
        """Validate PKCE parameters meet RFC 7636 requirements."""
        if not (43 <= len(self.code_verifier) <= 128):
            raise ValueError("code_verifier must be 43-128 characters")
        if self.method != "S256":
            raise ValueError("Only S256 code challenge method is supported")
        if self.code_challenge != compute_code_challenge(self.code_verifier):
            raise ValueError("code_challenge does not match code_verifier")


@dataclass(frozen=True)
class AuthorizationState:
    """State held between the login redirect and the matching callback."""

    state: str
    nonce: str
    code_verifier: str = field(repr=False)
