"""PKCE, state and nonce generation (RFC 7636, OIDC Core).

All values come from ``secrets`` and are encoded URL-safe without padding.
There is no error path: if the entropy source fails the process cannot
safely continue, so the exception propagates.
"""

from __future__ import annotations

import secrets

from passlink.auth.models.security import PKCEPair, compute_code_challenge

VERIFIER_ENTROPY_BYTES = 32
STATE_ENTROPY_BYTES = 32
NONCE_ENTROPY_BYTES = 16


def generate_pkce() -> PKCEPair:
    """Generate a new PKCE pair for an authorization flow.

    The verifier is 32 random bytes in base64url form (43 characters), the
    minimum RFC 7636 length. The challenge uses the S256 method.

    Returns:
        PKCEPair: Immutable verifier/challenge pair
    """
    code_verifier = secrets.token_urlsafe(VERIFIER_ENTROPY_BYTES)
    return PKCEPair(
        code_verifier=code_verifier,
        code_challenge=compute_code_challenge(code_verifier),
        method="S256",
    )


def generate_state() -> str:
    """Generate the CSRF state parameter tied to one login attempt."""
    return secrets.token_urlsafe(STATE_ENTROPY_BYTES)


def generate_nonce() -> str:
    """Generate the replay-protection nonce echoed back in the ID token."""
    return secrets.token_urlsafe(NONCE_ENTROPY_BYTES)


def validate_state(expected: str | None, actual: str | None) -> bool:
    """Constant-time comparison of the stored and returned state values."""
    if not expected or not actual:
        return False
    return secrets.compare_digest(expected.encode(), actual.encode())
