from typing import Any

import httpx

from passlink.auth.models.identity import CanonicalIdentity, TrustTier
from passlink.config import Settings

SESSION_SECRET = "test-session-secret-with-at-least-32-chars"

BASE_ENV = {
    "IDP_CLIENT_ID": "client-123",
    "IDP_CLIENT_SECRET": "client-secret-value-xyz",
    "IDP_REDIRECT_URI": "https://app.example.com/callback",
    "IDP_AUTHORIZATION_ENDPOINT": "https://id.example.ae/idshub/authorize",
    "IDP_TOKEN_ENDPOINT": "https://id.example.ae/idshub/token",
    "IDP_USERINFO_ENDPOINT": "https://id.example.ae/idshub/userinfo",
    "IDP_JWKS_URI": "https://id.example.ae/idshub/jwks",
    "IDP_LOGOUT_ENDPOINT": "https://id.example.ae/idshub/logout",
    "IDP_ISSUER": "https://id.example.ae/trustedx-authserver/oauth/main-as",
    "CRM_BASE_URL": "https://crm.example.com/",
    "CRM_API_TOKEN": "crm-api-token-value",
    "SESSION_SECRET": SESSION_SECRET,
}


def make_settings(**overrides: Any) -> Settings:
    """Settings built from a complete test environment."""
    settings = Settings.from_env(BASE_ENV)
    return settings.model_copy(update=overrides) if overrides else settings


def make_identity(**overrides: Any) -> CanonicalIdentity:
    """Tier-2 identity with every field populated."""
    values: dict[str, Any] = {
        "subject": "sub-0001",
        "uuid": "uuid-0001",
        "full_name": "Fatima Al Mansoori",
        "first_name": "Fatima",
        "last_name": "Al Mansoori",
        "national_id": "784199012345678",
        "mobile": "971501234567",
        "email": "fatima@example.ae",
        "date_of_birth": "01/01/1990",
        "nationality": "ARE",
        "acr": "urn:safelayer:tws:policies:authentication:level:substantial",
        "trust_tier": TrustTier.TIER2,
    }
    values.update(overrides)
    return CanonicalIdentity(**values)


def json_response(
    status_code: int, payload: Any, url: str = "https://example.com"
) -> httpx.Response:
    return httpx.Response(
        status_code, json=payload, request=httpx.Request("GET", url)
    )


def text_response(
    status_code: int, text: str, url: str = "https://example.com"
) -> httpx.Response:
    return httpx.Response(
        status_code, text=text, request=httpx.Request("GET", url)
    )


def assert_no_crm_calls(crm_client) -> None:
    crm_client.search_users.assert_not_awaited()
    crm_client.register_user.assert_not_awaited()
    crm_client.update_custom_fields.assert_not_awaited()
    crm_client.direct_login.assert_not_awaited()
