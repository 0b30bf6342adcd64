"""Login flow from authorization redirect to CRM hand-off.

``CallbackStateMachine`` owns the whole browser-facing sequence:

1. ``start_login`` seals fresh state, nonce and PKCE verifier and redirects
   to the provider.
2. ``handle_callback`` verifies and consumes that transient state, exchanges
   the code, validates the ID token, fetches and normalizes the profile and
   seals the session.
3. ``show_profile`` renders the identity held in the session.
4. ``confirm`` runs the CRM orchestration and returns the one-time login URL.
5. ``logout`` clears the session and optionally logs out at the provider.

Every handler returns a ``FlowResult``; this is the only place where
service exceptions are turned into ``Failed`` values.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from passlink.auth.models.errors import (
    AuthorizationError,
    AuthorizationStateError,
    StateValidationError,
    TokenValidationError,
    UserAuthCancelledError,
)
from passlink.auth.models.flow import AuthorizationResponse
from passlink.auth.models.security import AuthorizationState
from passlink.auth.models.tokens import TokenSet
from passlink.auth.primitives.identity import normalize_profile
from passlink.auth.primitives.pkce import validate_state
from passlink.auth.services.flow import AuthorizationFlow
from passlink.auth.services.id_token import IdTokenValidator
from passlink.auth.services.session import (
    NONCE_KIND,
    STATE_KIND,
    VERIFIER_KIND,
    Session,
    SessionCodec,
)
from passlink.auth.services.tokens import TokenExchangeClient
from passlink.auth.services.userinfo import UserInfoFetcher
from passlink.config import Settings
from passlink.crm.orchestrator import CRMAccountOrchestrator
from passlink.flow.results import CookieUpdate, Failed, FlowResult, Redirect, Rendered
from passlink.shared.errors import ErrorCategory, PasslinkError

logger = logging.getLogger(__name__)

SESSION_COOKIE = "passlink_session"
STATE_COOKIE = "passlink_state"
NONCE_COOKIE = "passlink_nonce"
VERIFIER_COOKIE = "passlink_pkce"

TRANSIENT_COOKIES = {
    STATE_KIND: STATE_COOKIE,
    NONCE_KIND: NONCE_COOKIE,
    VERIFIER_KIND: VERIFIER_COOKIE,
}

LOGIN_PATH = "/login"
PROFILE_PATH = "/profile"

EXPIRED_STATE_MESSAGE = "Your sign-in attempt has expired. Please start again."
STATE_MISMATCH_MESSAGE = "Your sign-in attempt could not be verified. Please start again."
NO_SESSION_MESSAGE = "You are not signed in. Please sign in and try again."


class CallbackStateMachine:
    """Drives one login attempt per request; holds no per-attempt state."""

    def __init__(
        self,
        settings: Settings,
        codec: SessionCodec | None = None,
        authorization_flow: AuthorizationFlow | None = None,
        token_client: TokenExchangeClient | None = None,
        id_token_validator: IdTokenValidator | None = None,
        userinfo_fetcher: UserInfoFetcher | None = None,
        orchestrator: CRMAccountOrchestrator | None = None,
    ):
        self._settings = settings
        self.codec = (
            codec
            if codec is not None
            else SessionCodec(settings.session_secret.get_secret_value())
        )
        self._authorization_flow = (
            authorization_flow
            if authorization_flow is not None
            else AuthorizationFlow(settings)
        )
        self._token_client = (
            token_client if token_client is not None else TokenExchangeClient(settings)
        )
        self._id_token_validator = (
            id_token_validator
            if id_token_validator is not None
            else IdTokenValidator(settings)
        )
        self._userinfo_fetcher = (
            userinfo_fetcher
            if userinfo_fetcher is not None
            else UserInfoFetcher(settings)
        )
        self._orchestrator = (
            orchestrator
            if orchestrator is not None
            else CRMAccountOrchestrator(settings)
        )

    @staticmethod
    def _clear_transient() -> tuple[CookieUpdate, ...]:
        return tuple(CookieUpdate.delete(name) for name in TRANSIENT_COOKIES.values())

    @staticmethod
    def _fail(error: PasslinkError, cookies: tuple[CookieUpdate, ...]) -> Failed:
        message = f"Login flow failed [{error.category.value}]: {error.message}"
        if error.detail:
            message += f" ({error.detail})"
        logger.error(message)
        return Failed(error=error, cookies=cookies)

    # ================================
    # Login start
    # ================================

    def start_login(self) -> Redirect:
        login = self._authorization_flow.start()
        sealed = self.codec.seal_authorization_state(login.auth_state)

        cookies = tuple(
            CookieUpdate.set(
                TRANSIENT_COOKIES[kind], token, max_age=self.codec.transient_ttl
            )
            for kind, token in sealed.items()
        )
        return Redirect(url=login.authorization_url, cookies=cookies)

    # ================================
    # Callback
    # ================================

    async def handle_callback(
        self, query: Mapping[str, str], cookies: Mapping[str, str]
    ) -> FlowResult:
        """Complete the provider round trip.

        The transient cookies are cleared on every outcome. On success the
        sealed session is set and the browser is sent to the profile view.
        """
        clear = self._clear_transient()
        response = AuthorizationResponse.from_query(query)

        try:
            auth_state = self._verify_state(response, cookies)
            self._check_provider_response(response)
            session = await self._establish_session(response.code, auth_state)
        except PasslinkError as e:
            return self._fail(e, clear)

        session_cookie = CookieUpdate.set(
            SESSION_COOKIE,
            self.codec.seal(session),
            max_age=session.remaining_seconds(),
        )
        logger.info(f"Session established for subject {session.identity.subject}")
        return Redirect(url=PROFILE_PATH, cookies=clear + (session_cookie,))

    def _verify_state(
        self, response: AuthorizationResponse, cookies: Mapping[str, str]
    ) -> AuthorizationState:
        """Check the returned state against the sealed one and consume it.

        Raises:
            AuthorizationStateError: If the transient state is missing,
                expired or was already used
            StateValidationError: If the returned state does not match
        """
        stored_state = self.codec.open_transient(STATE_KIND, cookies.get(STATE_COOKIE))
        if stored_state is None:
            raise AuthorizationStateError(
                EXPIRED_STATE_MESSAGE, detail="State cookie missing or expired"
            )

        if not validate_state(stored_state, response.state):
            raise StateValidationError(
                STATE_MISMATCH_MESSAGE,
                detail="Callback state does not match the stored state",
            )

        nonce = self.codec.open_transient(
            NONCE_KIND, cookies.get(NONCE_COOKIE), login_id=stored_state
        )
        code_verifier = self.codec.open_transient(
            VERIFIER_KIND, cookies.get(VERIFIER_COOKIE), login_id=stored_state
        )
        if nonce is None or code_verifier is None:
            raise AuthorizationStateError(
                EXPIRED_STATE_MESSAGE, detail="Nonce or PKCE cookie missing or expired"
            )

        if not self.codec.consume_authorization_state(stored_state):
            raise AuthorizationStateError(
                EXPIRED_STATE_MESSAGE, detail="Authorization state already used"
            )

        return AuthorizationState(
            state=stored_state, nonce=nonce, code_verifier=code_verifier
        )

    @staticmethod
    def _check_provider_response(response: AuthorizationResponse) -> None:
        if response.is_cancellation():
            raise UserAuthCancelledError(
                "Sign-in was cancelled.", detail=f"Provider error: {response.error}"
            )
        if response.is_error():
            description = response.error_description or response.error
            raise AuthorizationError(
                f"The identity provider reported an error: {description}",
                detail=f"Provider error: {response.error}",
            )
        if not response.is_success():
            raise AuthorizationError(
                "The identity provider did not return an authorization code.",
                detail="Callback without code or error",
            )

    async def _establish_session(
        self, code: str | None, auth_state: AuthorizationState
    ) -> Session:
        tokens = await self._token_client.exchange_code(
            code or "", auth_state.code_verifier
        )
        claims = await self._validate_id_token(tokens, auth_state.nonce)
        profile = await self._userinfo_fetcher.fetch_profile(tokens.access_token)
        identity = normalize_profile(profile, claims)

        logger.info(
            f"Identity normalized for subject {identity.subject} "
            f"(tier {identity.trust_tier.value})"
        )
        return Session(
            identity=identity,
            access_token=tokens.access_token,
            id_token=tokens.id_token,
            expires_at=tokens.calculate_expires_at(),
        )

    async def _validate_id_token(self, tokens: TokenSet, nonce: str) -> dict[str, Any]:
        try:
            return await self._id_token_validator.validate(tokens.id_token, nonce)
        except TokenValidationError as e:
            if not self._settings.id_token_validation_advisory:
                raise
            logger.warning(
                f"ID token validation failed, continuing in advisory mode: {e.detail}"
            )
            return {}

    # ================================
    # Profile and confirmation
    # ================================

    def show_profile(self, cookies: Mapping[str, str]) -> Redirect | Rendered:
        session = self.codec.open(cookies.get(SESSION_COOKIE))
        if session is None:
            return Redirect(url=LOGIN_PATH, cookies=(CookieUpdate.delete(SESSION_COOKIE),))

        return Rendered(
            view="profile",
            context={
                "identity": session.identity.model_dump(mode="json"),
                "expires_in": session.remaining_seconds(),
            },
        )

    async def confirm(self, cookies: Mapping[str, str]) -> Redirect | Failed:
        """Run the CRM orchestration for the signed-in identity.

        Returns:
            ``Redirect`` to the CRM's one-time login URL, or ``Failed``
        """
        session = self.codec.open(cookies.get(SESSION_COOKIE))
        if session is None:
            return self._fail(
                PasslinkError(NO_SESSION_MESSAGE, category=ErrorCategory.NO_SESSION),
                (CookieUpdate.delete(SESSION_COOKIE),),
            )

        try:
            outcome = await self._orchestrator.run(session.identity)
        except PasslinkError as e:
            return self._fail(e, ())

        return Redirect(url=outcome.login_url)

    # ================================
    # Logout
    # ================================

    def logout(self, cookies: Mapping[str, str], local_only: bool = False) -> Redirect:
        """Clear the session, then return home or to the provider's logout."""
        session = self.codec.open(cookies.get(SESSION_COOKIE))
        if session is not None:
            logger.info(f"Logging out subject {session.identity.subject}")

        cleared = (CookieUpdate.delete(SESSION_COOKIE),) + self._clear_transient()
        if local_only:
            return Redirect(url=self._settings.app_base_url, cookies=cleared)
        return Redirect(
            url=self._authorization_flow.build_logout_url(), cookies=cleared
        )

    async def close(self) -> None:
        await self._token_client.close()
        await self._id_token_validator.close()
        await self._userinfo_fetcher.close()
        await self._orchestrator.close()
