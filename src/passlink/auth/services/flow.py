"""Authorization request composition and RP-initiated logout.

Generates the per-attempt security parameters and turns them, together with
the static provider configuration, into the provider's authorization URL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from passlink.auth.models.flow import AuthorizationRequest, LogoutRequest
from passlink.auth.models.security import AuthorizationState
from passlink.auth.primitives.pkce import generate_nonce, generate_pkce, generate_state
from passlink.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginStart:
    """Result of starting a login: where to send the user and what to keep."""

    authorization_url: str
    auth_state: AuthorizationState


class AuthorizationFlow:
    """Builds provider URLs from generated parameters and static settings."""

    def __init__(self, settings: Settings):
        self._settings = settings

    def build_authorization_url(self, state: str, nonce: str, code_challenge: str) -> str:
        """Compose the authorization URL.

        Pure function of its inputs and the configuration.
        """
        request = AuthorizationRequest(
            authorization_endpoint=self._settings.authorization_endpoint,
            client_id=self._settings.client_id,
            redirect_uri=self._settings.redirect_uri,
            scope=self._settings.scope,
            state=state,
            nonce=nonce,
            code_challenge=code_challenge,
            code_challenge_method="S256",
            acr_values=self._settings.acr_values,
        )
        return request.build_authorization_url()

    def start(self) -> LoginStart:
        """Start a login attempt with fresh PKCE, state and nonce values."""
        pkce = generate_pkce()
        state = generate_state()
        nonce = generate_nonce()

        authorization_url = self.build_authorization_url(
            state, nonce, pkce.code_challenge
        )
        logger.info(f"Generated authorization URL for client {self._settings.client_id}")

        return LoginStart(
            authorization_url=authorization_url,
            auth_state=AuthorizationState(
                state=state, nonce=nonce, code_verifier=pkce.code_verifier
            ),
        )

    def build_logout_url(self, post_logout_redirect_uri: str | None = None) -> str:
        """Provider logout URL that returns the browser to this application."""
        return LogoutRequest(
            logout_endpoint=self._settings.logout_endpoint,
            post_logout_redirect_uri=post_logout_redirect_uri
            or self._settings.app_base_url,
        ).build_logout_url()
