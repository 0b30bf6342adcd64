import pytest

from passlink.config import ACR_LOW, DEFAULT_SCOPE, Settings
from passlink.shared.errors import ConfigurationError
from tests.conftest import BASE_ENV


class TestSettingsFromEnv:
    def test_loads_required_and_defaults(self) -> None:
        # Act
        settings = Settings.from_env(BASE_ENV)

        # Assert
        assert settings.client_id == "client-123"
        assert settings.client_secret.get_secret_value() == "client-secret-value-xyz"
        assert settings.scope == DEFAULT_SCOPE
        assert settings.acr_values == ACR_LOW
        assert settings.crm_api_version == "1.0.0"
        assert settings.crm_default_country == "CY"
        assert settings.token_exchange_timeout == 30.0
        assert settings.require_national_id is True
        assert settings.id_token_validation_advisory is False

    def test_missing_variables_are_all_reported(self) -> None:
        # Arrange
        env = {
            k: v
            for k, v in BASE_ENV.items()
            if k not in ("IDP_CLIENT_ID", "CRM_API_TOKEN")
        }
        env["SESSION_SECRET"] = "   "

        # Act / Assert
        with pytest.raises(ConfigurationError) as exc_info:
            Settings.from_env(env)

        message = str(exc_info.value)
        assert "IDP_CLIENT_ID" in message
        assert "CRM_API_TOKEN" in message
        assert "SESSION_SECRET" in message

    def test_optional_overrides(self) -> None:
        # Arrange
        env = {
            **BASE_ENV,
            "REQUIRE_NATIONAL_ID": "false",
            "TOKEN_EXCHANGE_TIMEOUT": "12.5",
            "CRM_DEFAULT_COUNTRY": "AE",
        }

        # Act
        settings = Settings.from_env(env)

        # Assert
        assert settings.require_national_id is False
        assert settings.token_exchange_timeout == 12.5
        assert settings.crm_default_country == "AE"

    def test_short_session_secret_rejected_outside_development(self) -> None:
        # Arrange
        env = {**BASE_ENV, "APP_ENV": "production", "SESSION_SECRET": "too-short"}

        # Act / Assert
        with pytest.raises(ConfigurationError) as exc_info:
            Settings.from_env(env)

        assert "SESSION_SECRET" in str(exc_info.value)
        assert "too-short" not in str(exc_info.value)

    def test_invalid_value_does_not_echo_input(self) -> None:
        # Arrange
        env = {**BASE_ENV, "PORT": "not-a-port"}

        # Act / Assert
        with pytest.raises(ConfigurationError) as exc_info:
            Settings.from_env(env)

        assert "port" in str(exc_info.value)
        assert "not-a-port" not in str(exc_info.value)

    def test_crm_urls_derived_from_base(self) -> None:
        # Act
        settings = Settings.from_env(BASE_ENV)

        # Assert
        assert settings.crm_api_root == "https://crm.example.com/rest"
        assert settings.crm_direct_login_redirect == "https://crm.example.com/"
        assert settings.crm_direct_login_logout == "https://crm.example.com/login"

    def test_secrets_are_not_in_repr(self) -> None:
        settings = Settings.from_env(BASE_ENV)
        assert "client-secret-value-xyz" not in repr(settings)
        assert BASE_ENV["SESSION_SECRET"] not in repr(settings)
