"""Base exception and error taxonomy shared by the provider and CRM layers.

Every failure that can reach a caller carries a stable ``ErrorCategory`` tag
plus a human-readable message that is safe to show to the end user.
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    """Stable tags for every failure the login flow can surface."""

    CSRF_MISMATCH = "CSRF_MISMATCH"
    EXPIRED_AUTH_STATE = "EXPIRED_AUTH_STATE"
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"
    AUTHORIZATION_FAILED = "AUTHORIZATION_FAILED"
    TOKEN_EXCHANGE_FAILED = "TOKEN_EXCHANGE_FAILED"
    TOKEN_VALIDATION_FAILED = "TOKEN_VALIDATION_FAILED"
    PROFILE_FETCH_FAILED = "PROFILE_FETCH_FAILED"
    INSUFFICIENT_TRUST_TIER = "INSUFFICIENT_TRUST_TIER"
    UNKNOWN_ACCOUNT_TYPE = "UNKNOWN_ACCOUNT_TYPE"
    CRM_LOOKUP_FAILED = "CRM_LOOKUP_FAILED"
    CRM_REGISTRATION_FAILED = "CRM_REGISTRATION_FAILED"
    CRM_LINK_FAILED = "CRM_LINK_FAILED"
    CRM_LOGIN_URL_FAILED = "CRM_LOGIN_URL_FAILED"
    NO_SESSION = "NO_SESSION"


class PasslinkError(Exception):
    """Base exception for all login-flow failures.

    Args:
        message: User-facing description, never containing secrets
        category: Stable tag used by callers to branch on the failure
        detail: Optional diagnostic text for logs (already masked)
    """

    category: ErrorCategory = ErrorCategory.AUTHORIZATION_FAILED

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        detail: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        if category is not None:
            self.category = category
        self.detail = detail

    def __str__(self) -> str:
        return self.message


class ConfigurationError(Exception):
    """Raised at startup when required configuration is missing or invalid."""

    pass
