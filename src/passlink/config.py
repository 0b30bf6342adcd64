"""Process configuration for the identity provider and CRM integrations.

Configuration is read from the environment exactly once, at process start,
and handed to each component through its constructor. Missing required
values fail fast with a single error naming every missing variable.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, SecretStr, ValidationError, model_validator

from passlink.shared.errors import ConfigurationError

ACR_LOW = "urn:safelayer:tws:policies:authentication:level:low"
ACR_SUBSTANTIAL = "urn:safelayer:tws:policies:authentication:level:substantial"
ACR_HIGH = "urn:safelayer:tws:policies:authentication:level:high"

DEFAULT_SCOPE = "urn:uae:digitalid:profile:general"

# Environment variable -> Settings field
REQUIRED_VARIABLES = {
    "IDP_CLIENT_ID": "client_id",
    "IDP_CLIENT_SECRET": "client_secret",
    "IDP_REDIRECT_URI": "redirect_uri",
    "IDP_AUTHORIZATION_ENDPOINT": "authorization_endpoint",
    "IDP_TOKEN_ENDPOINT": "token_endpoint",
    "IDP_USERINFO_ENDPOINT": "userinfo_endpoint",
    "IDP_JWKS_URI": "jwks_uri",
    "IDP_LOGOUT_ENDPOINT": "logout_endpoint",
    "IDP_ISSUER": "issuer",
    "CRM_BASE_URL": "crm_base_url",
    "CRM_API_TOKEN": "crm_api_token",
    "SESSION_SECRET": "session_secret",
}

OPTIONAL_VARIABLES = {
    "IDP_SCOPE": "scope",
    "IDP_ACR_VALUES": "acr_values",
    "CRM_API_VERSION": "crm_api_version",
    "CRM_API_PREFIX": "crm_api_prefix",
    "CRM_DEFAULT_COUNTRY": "crm_default_country",
    "CRM_DEFAULT_LOCALE": "crm_default_locale",
    "CRM_REDIRECT_URL": "crm_redirect_url",
    "CRM_LOGOUT_URL": "crm_logout_url",
    "CRM_PLACEHOLDER_EMAIL_DOMAIN": "crm_placeholder_email_domain",
    "APP_BASE_URL": "app_base_url",
    "APP_ENV": "environment",
    "REQUIRE_NATIONAL_ID": "require_national_id",
    "ID_TOKEN_VALIDATION_ADVISORY": "id_token_validation_advisory",
    "TOKEN_EXCHANGE_TIMEOUT": "token_exchange_timeout",
    "HTTP_TIMEOUT": "http_timeout",
    "LOG_LEVEL": "log_level",
    "HOST": "host",
    "PORT": "port",
}

MIN_SESSION_SECRET_LENGTH = 32


class Settings(BaseModel):
    """Immutable configuration shared by every component."""

    model_config = ConfigDict(frozen=True)

    # Identity provider
    client_id: str
    client_secret: SecretStr
    redirect_uri: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    jwks_uri: str
    logout_endpoint: str
    issuer: str
    scope: str = DEFAULT_SCOPE
    acr_values: str = ACR_LOW

    # CRM
    crm_base_url: str
    crm_api_token: SecretStr
    crm_api_version: str = "1.0.0"
    crm_api_prefix: str = "/rest"
    crm_default_country: str = "CY"
    crm_default_locale: str = "en"
    crm_redirect_url: str | None = None
    crm_logout_url: str | None = None
    crm_placeholder_email_domain: str = "uaepass.ae"

    # Application
    session_secret: SecretStr
    app_base_url: str = "http://localhost:8000"
    environment: str = "development"
    require_national_id: bool = True
    id_token_validation_advisory: bool = False
    token_exchange_timeout: float = 30.0
    http_timeout: float = 10.0
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    @model_validator(mode="after")
    def _check_session_secret(self) -> Settings:
        secret = self.session_secret.get_secret_value()
        if not self.is_development and len(secret) < MIN_SESSION_SECRET_LENGTH:
            raise ValueError(
                f"SESSION_SECRET must be at least {MIN_SESSION_SECRET_LENGTH} "
                "characters outside development"
            )
        return self

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev", "local")

    @property
    def crm_root(self) -> str:
        return self.crm_base_url.rstrip("/")

    @property
    def crm_api_root(self) -> str:
        prefix = self.crm_api_prefix.strip("/")
        return f"{self.crm_root}/{prefix}" if prefix else self.crm_root

    @property
    def crm_direct_login_redirect(self) -> str:
        return self.crm_redirect_url or f"{self.crm_root}/"

    @property
    def crm_direct_login_logout(self) -> str:
        return self.crm_logout_url or f"{self.crm_root}/login"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from environment-style variables.

        Args:
            environ: Mapping to read from, defaults to ``os.environ``

        Returns:
            Settings: Validated configuration

        Raises:
            ConfigurationError: If any required variable is missing or a value
                fails validation
        """
        env = os.environ if environ is None else environ

        missing = [name for name in REQUIRED_VARIABLES if not env.get(name, "").strip()]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )

        values: dict[str, str] = {
            field: env[name].strip() for name, field in REQUIRED_VARIABLES.items()
        }
        for name, field in OPTIONAL_VARIABLES.items():
            raw = env.get(name, "").strip()
            if raw:
                values[field] = raw

        try:
            return cls(**values)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in err['loc']) or 'settings'}: "
                f"{err['msg']}"
                for err in e.errors()
            )
            raise ConfigurationError(f"Invalid configuration: {problems}") from None
