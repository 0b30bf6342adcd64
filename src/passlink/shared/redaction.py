"""Helpers for masking sensitive information in logs."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any

MASK = "***"

SENSITIVE_KEY_FRAGMENTS = (
    "password",
    "secret",
    "token",
    "authorization",
    "code_verifier",
)


def mask_secret(value: Any, visible: int = 3) -> str:
    """Mask a secret, keeping at most a short non-identifying prefix."""
    if not isinstance(value, str) or not value:
        return MASK
    if len(value) <= visible * 2:
        return MASK
    return f"{value[:visible]}{MASK}"


def redact_email(value: str | None) -> str | None:
    if not value or "@" not in value:
        return value

    local, domain = value.split("@", 1)
    if not local:
        return f"{MASK}@{domain}"
    if len(local) == 1:
        masked_local = "*"
    elif len(local) == 2:
        masked_local = f"{local[0]}*"
    else:
        masked_local = f"{local[0]}{MASK}{local[-1]}"
    return f"{masked_local}@{domain}"


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in SENSITIVE_KEY_FRAGMENTS)


def sanitize_payload(data: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy with sensitive fields masked, recursing into nested data."""
    sanitized: dict[str, Any] = {}
    for key, value in data.items():
        if is_sensitive_key(str(key)):
            sanitized[key] = mask_secret(value)
        elif isinstance(value, Mapping):
            sanitized[key] = sanitize_payload(value)
        elif isinstance(value, list):
            sanitized[key] = [
                sanitize_payload(item) if isinstance(item, Mapping) else item
                for item in value
            ]
        else:
            sanitized[key] = value
    return sanitized


def sanitize_response_body(
    body: str, secrets: Iterable[str] = (), limit: int = 500
) -> str:
    """Render an upstream response body for logs and error details.

    JSON bodies have their sensitive keys masked. Any of ``secrets`` still
    present in the text afterwards is masked wherever it appears, then the
    result is truncated to ``limit`` characters.
    """
    try:
        parsed: Any = json.loads(body) if body else None
    except ValueError:
        parsed = None

    if isinstance(parsed, Mapping):
        text = json.dumps(sanitize_payload(parsed))
    elif isinstance(parsed, list):
        text = json.dumps(
            [
                sanitize_payload(item) if isinstance(item, Mapping) else item
                for item in parsed
            ]
        )
    else:
        text = body

    for secret in secrets:
        if secret:
            text = text.replace(secret, mask_secret(secret))
    return text[:limit]
