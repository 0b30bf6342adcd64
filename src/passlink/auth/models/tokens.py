"""Token exchange request and response models."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from pydantic import BaseModel, field_validator

DEFAULT_EXPIRES_IN_SECONDS = 3600


@dataclass(frozen=True)
class TokenRequest:
    """Authorization code exchange parameters (RFC 6749 Section 4.1.3).

    The provider expects client credentials in the form body rather than in
    a Basic Authorization header.
    """

    # Required fields first
    token_endpoint: str
    code: str = field(repr=False)
    redirect_uri: str
    client_id: str
    client_secret: str = field(repr=False)

    # Optional fields with defaults last
    code_verifier: str | None = field(default=None, repr=False)  # RFC 7636 PKCE
    grant_type: str = "authorization_code"

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for application/x-www-form-urlencoded request.

        Returns:
            Dictionary suitable for httpx data parameter
        """
        data = {
            "grant_type": self.grant_type,
            "code": self.code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }

        # Only sent when PKCE was used for this login
        if self.code_verifier:
            data["code_verifier"] = self.code_verifier

        return data


class TokenSet(BaseModel):
    """Successful token endpoint response (RFC 6749 Section 5.1)."""

    access_token: str
    id_token: str = ""
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int = DEFAULT_EXPIRES_IN_SECONDS

    @field_validator("id_token", mode="before")
    @classmethod
    def _missing_id_token(cls, v: str | None) -> str:
        return v or ""

    @field_validator("expires_in", mode="before")
    @classmethod
    def _default_lifetime(cls, v: int | None) -> int:
        return v or DEFAULT_EXPIRES_IN_SECONDS

    def calculate_expires_at(self, now: float | None = None) -> int:
        """Absolute expiry as a unix timestamp in whole seconds."""
        now = time.time() if now is None else now
        return int(now) + self.expires_in


class TokenErrorResponse(BaseModel):
    """Token endpoint error response (RFC 6749 Section 5.2)."""

    error: str = "unknown_error"
    error_description: str | None = None
    error_uri: str | None = None
