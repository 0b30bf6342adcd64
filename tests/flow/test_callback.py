"""End-to-end tests of the login flow with provider and CRM calls mocked."""

import logging
from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlparse

from passlink.auth.models.errors import (
    TokenExchangeError,
    TokenExchangeErrorKind,
    TokenValidationError,
)
from passlink.auth.models.identity import UNAVAILABLE, TrustTier
from passlink.auth.models.tokens import TokenSet
from passlink.auth.services.session import Session, SessionCodec
from passlink.crm.models import CRMAccount
from passlink.crm.orchestrator import CRMAccountOrchestrator
from passlink.flow.callback import (
    NONCE_COOKIE,
    PROFILE_PATH,
    SESSION_COOKIE,
    STATE_COOKIE,
    VERIFIER_COOKIE,
    CallbackStateMachine,
)
from passlink.flow.results import Failed, Redirect, Rendered
from passlink.shared.errors import ErrorCategory
from tests.conftest import (
    SESSION_SECRET,
    assert_no_crm_calls,
    make_identity,
    make_settings,
)

PROFILE = {
    "sub": "provider-subject-1",
    "uuid": "uuid-0001",
    "firstnameEN": "Fatima",
    "lastnameEN": "Al Mansoori",
    "fullnameEN": "Fatima Al Mansoori",
    "idn": "784199012345678",
    "mobile": "971501234567",
    "email": "fatima@example.ae",
    "nationalityEN": "ARE",
    "userType": "SOP2",
}
LOGIN_URL = "https://crm.example.com/auto-login/one-time"


class CallbackTest:
    def setup_method(self):
        self.settings = make_settings()
        self.codec = SessionCodec(SESSION_SECRET)

        self.token_client = AsyncMock()
        self.token_client.exchange_code.return_value = TokenSet(
            access_token="access-token-xyz", id_token="header.payload.sig"
        )
        self.id_token_validator = AsyncMock()
        self.id_token_validator.validate.return_value = {"sub": "provider-subject-1"}
        self.userinfo_fetcher = AsyncMock()
        self.userinfo_fetcher.fetch_profile.return_value = dict(PROFILE)

        self.crm_client = AsyncMock()
        self.crm_client.search_users.return_value = None
        self.crm_client.register_user.return_value = CRMAccount(id=101)
        self.crm_client.direct_login.return_value = LOGIN_URL

        self.machine = self.build_machine(self.settings)

    def build_machine(self, settings) -> CallbackStateMachine:
        return CallbackStateMachine(
            settings,
            codec=self.codec,
            token_client=self.token_client,
            id_token_validator=self.id_token_validator,
            userinfo_fetcher=self.userinfo_fetcher,
            orchestrator=CRMAccountOrchestrator(settings, client=self.crm_client),
        )

    def begin(self) -> tuple[str, dict[str, str]]:
        """Start a login; return the state sent to the provider and the cookies."""
        redirect = self.machine.start_login()
        state = parse_qs(urlparse(redirect.url).query)["state"][0]
        cookies = {c.name: c.value for c in redirect.cookies}
        return state, cookies

    def assert_no_network_calls(self) -> None:
        self.token_client.exchange_code.assert_not_awaited()
        self.id_token_validator.validate.assert_not_awaited()
        self.userinfo_fetcher.fetch_profile.assert_not_awaited()
        assert_no_crm_calls(self.crm_client)

    @staticmethod
    def assert_transient_cleared(result) -> None:
        deleted = {c.name for c in result.cookies if c.is_deletion}
        assert {STATE_COOKIE, NONCE_COOKIE, VERIFIER_COOKIE} <= deleted


class TestStartLogin(CallbackTest):
    def test_sets_three_transient_cookies(self) -> None:
        # Act
        redirect = self.machine.start_login()

        # Assert
        assert redirect.url.startswith(self.settings.authorization_endpoint)
        names = {c.name: c for c in redirect.cookies}
        assert set(names) == {STATE_COOKIE, NONCE_COOKIE, VERIFIER_COOKIE}
        assert all(c.max_age == 600 for c in redirect.cookies)


class TestHandleCallback(CallbackTest):
    async def test_full_login_and_confirmation(self):
        # Arrange
        state, cookies = self.begin()

        # Act
        result = await self.machine.handle_callback(
            {"code": "auth-code-123", "state": state}, cookies
        )

        # Assert
        assert isinstance(result, Redirect)
        assert result.url == PROFILE_PATH
        self.assert_transient_cleared(result)

        session_cookie = next(c for c in result.cookies if c.name == SESSION_COOKIE)
        session = self.codec.open(session_cookie.value)
        assert session.identity.first_name == "Fatima"
        assert session.identity.trust_tier.value == "TIER2"

        code, verifier = self.token_client.exchange_code.call_args[0]
        assert code == "auth-code-123"
        assert len(verifier) == 43
        assert self.id_token_validator.validate.call_args[0][0] == "header.payload.sig"

        # Act
        confirmation = await self.machine.confirm({SESSION_COOKIE: session_cookie.value})

        # Assert
        assert isinstance(confirmation, Redirect)
        assert confirmation.url == LOGIN_URL
        self.crm_client.register_user.assert_awaited_once()
        self.crm_client.update_custom_fields.assert_awaited_once()
        self.crm_client.direct_login.assert_awaited_once()

    async def test_state_mismatch_aborts_without_network_calls(self):
        # Arrange
        _, cookies = self.begin()

        # Act
        result = await self.machine.handle_callback(
            {"code": "auth-code-123", "state": "forged-state"}, cookies
        )

        # Assert
        assert isinstance(result, Failed)
        assert result.error.category is ErrorCategory.CSRF_MISMATCH
        self.assert_transient_cleared(result)
        self.assert_no_network_calls()

    async def test_missing_state_cookie_is_expired(self):
        # Arrange
        state, cookies = self.begin()
        del cookies[STATE_COOKIE]

        # Act
        result = await self.machine.handle_callback(
            {"code": "c", "state": state}, cookies
        )

        # Assert
        assert result.error.category is ErrorCategory.EXPIRED_AUTH_STATE
        self.assert_no_network_calls()

    async def test_missing_verifier_cookie_is_expired(self):
        # Arrange
        state, cookies = self.begin()
        del cookies[VERIFIER_COOKIE]

        # Act
        result = await self.machine.handle_callback(
            {"code": "c", "state": state}, cookies
        )

        # Assert
        assert result.error.category is ErrorCategory.EXPIRED_AUTH_STATE
        self.assert_no_network_calls()

    async def test_replayed_callback_is_rejected(self):
        # Arrange
        state, cookies = self.begin()
        query = {"code": "auth-code-123", "state": state}
        await self.machine.handle_callback(query, cookies)

        # Act
        replay = await self.machine.handle_callback(query, cookies)

        # Assert
        assert isinstance(replay, Failed)
        assert replay.error.category is ErrorCategory.EXPIRED_AUTH_STATE
        assert self.token_client.exchange_code.await_count == 1

    async def test_user_cancellation(self):
        # Arrange
        state, cookies = self.begin()

        # Act
        result = await self.machine.handle_callback(
            {"error": "access_denied", "state": state}, cookies
        )

        # Assert
        assert result.error.category is ErrorCategory.AUTHORIZATION_DENIED
        self.assert_transient_cleared(result)
        self.assert_no_network_calls()

    async def test_provider_error(self):
        # Arrange
        state, cookies = self.begin()

        # Act
        result = await self.machine.handle_callback(
            {"error": "server_error", "error_description": "Try later", "state": state},
            cookies,
        )

        # Assert
        assert result.error.category is ErrorCategory.AUTHORIZATION_FAILED
        assert "Try later" in result.error.message

    async def test_provider_error_with_wrong_state_is_csrf(self):
        # Arrange
        _, cookies = self.begin()

        # Act
        result = await self.machine.handle_callback(
            {"error": "access_denied", "state": "other"}, cookies
        )

        # Assert
        assert result.error.category is ErrorCategory.CSRF_MISMATCH

    async def test_token_exchange_failure_clears_state(self):
        # Arrange
        state, cookies = self.begin()
        self.token_client.exchange_code.side_effect = TokenExchangeError(
            "unreachable", kind=TokenExchangeErrorKind.NETWORK
        )

        # Act
        result = await self.machine.handle_callback(
            {"code": "c", "state": state}, cookies
        )

        # Assert
        assert result.error.category is ErrorCategory.TOKEN_EXCHANGE_FAILED
        assert result.error.kind is TokenExchangeErrorKind.NETWORK
        self.assert_transient_cleared(result)
        assert not any(c.name == SESSION_COOKIE for c in result.cookies)

    async def test_id_token_failure_is_fatal_by_default(self):
        # Arrange
        state, cookies = self.begin()
        self.id_token_validator.validate.side_effect = TokenValidationError(
            "bad token", detail="nonce mismatch"
        )

        # Act
        result = await self.machine.handle_callback(
            {"code": "c", "state": state}, cookies
        )

        # Assert
        assert result.error.category is ErrorCategory.TOKEN_VALIDATION_FAILED
        self.userinfo_fetcher.fetch_profile.assert_not_awaited()

    async def test_id_token_failure_in_advisory_mode(self, caplog):
        # Arrange
        self.machine = self.build_machine(
            make_settings(id_token_validation_advisory=True)
        )
        state, cookies = self.begin()
        self.id_token_validator.validate.side_effect = TokenValidationError(
            "bad token", detail="nonce mismatch"
        )

        # Act
        with caplog.at_level(logging.WARNING):
            result = await self.machine.handle_callback(
                {"code": "c", "state": state}, cookies
            )

        # Assert
        assert isinstance(result, Redirect)
        assert "advisory" in caplog.text

    async def test_secrets_not_logged(self, caplog):
        # Arrange
        caplog.set_level(logging.DEBUG, logger="passlink")
        state, cookies = self.begin()

        # Act
        await self.machine.handle_callback({"code": "c", "state": state}, cookies)

        # Assert
        assert SESSION_SECRET not in caplog.text
        assert "client-secret-value-xyz" not in caplog.text


class TestProfileAndConfirm(CallbackTest):
    def seal_session(self, **identity_overrides) -> str:
        return self.codec.seal(
            Session(
                identity=make_identity(**identity_overrides),
                access_token="access-token-xyz",
                expires_at=2_000_000_000,
            )
        )

    def test_profile_renders_identity(self) -> None:
        # Act
        result = self.machine.show_profile({SESSION_COOKIE: self.seal_session()})

        # Assert
        assert isinstance(result, Rendered)
        assert result.view == "profile"
        assert result.context["identity"]["email"] == "fatima@example.ae"
        assert "access_token" not in result.context

    def test_profile_without_session_redirects_to_login(self) -> None:
        result = self.machine.show_profile({})
        assert isinstance(result, Redirect)
        assert result.url == "/login"

    async def test_confirm_without_session(self):
        # Act
        result = await self.machine.confirm({SESSION_COOKIE: "garbage"})

        # Assert
        assert isinstance(result, Failed)
        assert result.error.category is ErrorCategory.NO_SESSION
        assert_no_crm_calls(self.crm_client)

    async def test_confirm_tier1_identity_is_rejected(self):
        # Arrange
        token = self.seal_session(trust_tier=TrustTier.TIER1, national_id=UNAVAILABLE)

        # Act
        result = await self.machine.confirm({SESSION_COOKIE: token})

        # Assert
        assert isinstance(result, Failed)
        assert result.error.category is ErrorCategory.INSUFFICIENT_TRUST_TIER
        assert_no_crm_calls(self.crm_client)


class TestLogout(CallbackTest):
    def test_provider_logout(self) -> None:
        # Act
        result = self.machine.logout({})

        # Assert
        assert result.url.startswith(self.settings.logout_endpoint)
        deleted = {c.name for c in result.cookies if c.is_deletion}
        assert SESSION_COOKIE in deleted

    def test_local_logout(self) -> None:
        result = self.machine.logout({}, local_only=True)
        assert result.url == self.settings.app_base_url

    async def test_close_releases_clients(self):
        await self.machine.close()

        self.token_client.close.assert_awaited_once()
        self.id_token_validator.close.assert_awaited_once()
        self.userinfo_fetcher.close.assert_awaited_once()
        self.crm_client.close.assert_awaited_once()
