"""Exception hierarchy for identity provider (OIDC) errors.

Provides specific exception types for each failure mode of the login flow
so the callback state machine can classify them consistently.
"""

from __future__ import annotations

from enum import Enum

from passlink.shared.errors import ErrorCategory, PasslinkError


class OAuth2Error(PasslinkError):
    """Base exception for all identity provider related errors."""

    pass


class AuthorizationStateError(OAuth2Error):
    """Raised when the transient authorization state is missing or expired."""

    category = ErrorCategory.EXPIRED_AUTH_STATE


class StateValidationError(OAuth2Error):
    """Raised when the callback state does not match the stored state.

    This indicates either a forged callback or a callback belonging to a
    different login attempt, which could indicate a CSRF attack.
    """

    category = ErrorCategory.CSRF_MISMATCH


class AuthorizationError(OAuth2Error):
    """Raised when the provider reports an error on the callback."""

    category = ErrorCategory.AUTHORIZATION_FAILED


class UserAuthCancelledError(AuthorizationError):
    """Raised when the user cancels or denies the authorization."""

    category = ErrorCategory.AUTHORIZATION_DENIED


class TokenExchangeErrorKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    PROVIDER_REJECTED = "provider_rejected"
    INVALID_RESPONSE = "invalid_response"


class TokenExchangeError(OAuth2Error):
    """Raised when authorization code to token exchange fails.

    The ``kind`` distinguishes transport failures, the overall timeout and
    rejections by the provider.
    """

    category = ErrorCategory.TOKEN_EXCHANGE_FAILED

    def __init__(
        self,
        message: str,
        *,
        kind: TokenExchangeErrorKind,
        status_code: int | None = None,
        provider_error: str | None = None,
        detail: str | None = None,
    ):
        super().__init__(message, detail=detail)
        self.kind = kind
        self.status_code = status_code
        self.provider_error = provider_error


class TokenValidationError(OAuth2Error):
    """Raised when the ID token signature or claims cannot be verified."""

    category = ErrorCategory.TOKEN_VALIDATION_FAILED


class ProfileFetchError(OAuth2Error):
    """Raised when the userinfo endpoint call fails."""

    category = ErrorCategory.PROFILE_FETCH_FAILED

    def __init__(
        self, message: str, *, status_code: int | None = None, detail: str | None = None
    ):
        super().__init__(message, detail=detail)
        self.status_code = status_code


class NameResolutionError(OAuth2Error):
    """Raised by transports when the target host name cannot be resolved."""

    category = ErrorCategory.TOKEN_EXCHANGE_FAILED
