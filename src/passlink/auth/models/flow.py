"""Authorization flow models.

Contains models for authorization requests, provider callbacks and
RP-initiated logout.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from urllib.parse import urlencode

CANCELLATION_ERRORS = frozenset({"access_denied", "user_cancelled", "cancelled"})


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization request parameters for the OIDC code flow."""

    authorization_endpoint: str
    client_id: str
    redirect_uri: str
    scope: str
    state: str
    nonce: str
    code_challenge: str
    code_challenge_method: str
    acr_values: str

    def build_authorization_url(self) -> str:
        """Build the complete authorization URL.

        Parameter order is fixed so the same inputs always produce the same URL.
        """
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "state": self.state,
            "nonce": self.nonce,
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
            "acr_values": self.acr_values,
        }

        return f"{self.authorization_endpoint}?{urlencode(params)}"


@dataclass(frozen=True)
class LogoutRequest:
    logout_endpoint: str
    post_logout_redirect_uri: str

    def build_logout_url(self) -> str:
        params = {"redirect_uri": self.post_logout_redirect_uri}
        return f"{self.logout_endpoint}?{urlencode(params)}"


@dataclass(frozen=True)
class AuthorizationResponse:
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    @classmethod
    def from_query(cls, params: Mapping[str, str]) -> AuthorizationResponse:
        def get_single_param(key: str) -> str | None:
            value = params.get(key)
            return value if value else None

        return cls(
            code=get_single_param("code"),
            state=get_single_param("state"),
            error=get_single_param("error"),
            error_description=get_single_param("error_description"),
        )

    def is_success(self) -> bool:
        return self.error is None and self.code is not None

    def is_error(self) -> bool:
        return self.error is not None

    def is_cancellation(self) -> bool:
        return self.error in CANCELLATION_ERRORS
