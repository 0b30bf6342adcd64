"""CRM error hierarchy and registration failure classification.

Registration failures from the CRM are parsed for field-level validation
errors and reduced to a small fixed set of user-facing reasons; raw upstream
text is kept for logs only.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator
from enum import Enum
from typing import Any

from passlink.shared.errors import ErrorCategory, PasslinkError


class CRMError(PasslinkError):
    """Base exception for CRM API failures."""

    category = ErrorCategory.CRM_LOOKUP_FAILED

    def __init__(
        self, message: str, *, status_code: int | None = None, detail: str | None = None
    ):
        super().__init__(message, detail=detail)
        self.status_code = status_code


class CRMLookupError(CRMError):
    """Raised when a single account search call fails."""

    category = ErrorCategory.CRM_LOOKUP_FAILED


class CRMLinkError(CRMError):
    """Raised when writing linkage attributes back to an account fails."""

    category = ErrorCategory.CRM_LINK_FAILED


class CRMLoginUrlError(CRMError):
    """Raised when the CRM does not issue a direct-login URL."""

    category = ErrorCategory.CRM_LOGIN_URL_FAILED


class TrustTierError(PasslinkError):
    """Raised when the identity's assurance level does not allow registration."""

    category = ErrorCategory.INSUFFICIENT_TRUST_TIER


class UnknownAccountTypeError(TrustTierError):
    """Raised when no trust tier could be determined for the identity."""

    category = ErrorCategory.UNKNOWN_ACCOUNT_TYPE


class RegistrationFailureReason(str, Enum):
    DUPLICATE_PHONE = "duplicate_phone"
    DUPLICATE_EMAIL = "duplicate_email"
    OTHER_VALIDATION = "other_validation"
    UPSTREAM = "upstream"


REGISTRATION_MESSAGES = {
    RegistrationFailureReason.DUPLICATE_PHONE: (
        "This mobile number is already registered with another account. "
        "If you already have an account, please contact support."
    ),
    RegistrationFailureReason.DUPLICATE_EMAIL: (
        "This email address is already registered with another account. "
        "If you already have an account, please contact support."
    ),
    RegistrationFailureReason.OTHER_VALIDATION: (
        "Your details could not be accepted for registration. "
        "Please contact support."
    ),
    RegistrationFailureReason.UPSTREAM: (
        "We could not create your account right now. Please try again later."
    ),
}


class RegistrationError(CRMError):
    """Raised when account registration fails, with a fixed ``reason``."""

    category = ErrorCategory.CRM_REGISTRATION_FAILED

    def __init__(
        self,
        reason: RegistrationFailureReason,
        *,
        status_code: int | None = None,
        detail: str | None = None,
    ):
        super().__init__(
            REGISTRATION_MESSAGES[reason], status_code=status_code, detail=detail
        )
        self.reason = reason


DUPLICATE_PATTERN = re.compile(
    r"already|exist|taken|in use|duplicate|registered|unique", re.IGNORECASE
)
PHONE_PATTERN = re.compile(r"phone|mobile", re.IGNORECASE)
EMAIL_PATTERN = re.compile(r"e-?mail", re.IGNORECASE)

CONTAINER_KEYS = frozenset(
    {"errors", "error", "message", "messages", "children", "detail"}
)


def _iter_field_messages(data: Any, field: str = "") -> Iterator[tuple[str, str]]:
    """Yield ``(field, message)`` pairs from the CRM's error body shapes.

    Handles ``{"errors": {"phone": ["..."]}}``, lists of
    ``{"field": ..., "message": ...}`` objects and plain messages.
    """
    if isinstance(data, dict):
        named = data.get("field") or data.get("property") or data.get("name")
        if isinstance(named, str) and any(
            k in data for k in ("message", "msg", "error")
        ):
            message = data.get("message") or data.get("msg") or data.get("error")
            yield named, str(message)
            return
        for key, value in data.items():
            child = field if key in CONTAINER_KEYS else key
            yield from _iter_field_messages(value, child)
    elif isinstance(data, list):
        for item in data:
            yield from _iter_field_messages(item, field)
    elif data is not None:
        yield field, str(data)


def classify_registration_failure(
    status_code: int, body: str
) -> RegistrationFailureReason:
    """Reduce a failed registration response to a fixed reason.

    Args:
        status_code: HTTP status of the registration response
        body: Raw response text

    Returns:
        RegistrationFailureReason: Phone duplicates take precedence over
            email duplicates; any other 4xx is a validation failure and
            everything else an upstream failure
    """
    try:
        parsed: Any = json.loads(body) if body else None
    except ValueError:
        parsed = body

    pairs = list(_iter_field_messages(parsed))

    def duplicates(pattern: re.Pattern[str]) -> bool:
        return any(
            DUPLICATE_PATTERN.search(message)
            and pattern.search(field or message)
            for field, message in pairs
        )

    if duplicates(PHONE_PATTERN):
        return RegistrationFailureReason.DUPLICATE_PHONE
    if duplicates(EMAIL_PATTERN):
        return RegistrationFailureReason.DUPLICATE_EMAIL
    if 400 <= status_code < 500:
        return RegistrationFailureReason.OTHER_VALIDATION
    return RegistrationFailureReason.UPSTREAM
