"""Canonical identity model produced from the provider's userinfo response."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

UNAVAILABLE = "N/A"


class TrustTier(str, Enum):
    """Assurance level of the authenticated identity."""

    TIER1 = "TIER1"
    TIER2 = "TIER2"
    TIER3 = "TIER3"
    UNKNOWN = "UNKNOWN"


def is_available(value: str | None) -> bool:
    """True when a canonical field holds a real value rather than the sentinel."""
    return bool(value) and value != UNAVAILABLE


class CanonicalIdentity(BaseModel):
    """Provider identity normalized into a strict, immutable shape.

    Every string field holds either a real value or ``UNAVAILABLE`` so that
    downstream code never needs to null-check.
    """

    model_config = ConfigDict(frozen=True)

    subject: str
    uuid: str = UNAVAILABLE
    full_name: str = UNAVAILABLE
    first_name: str = UNAVAILABLE
    last_name: str = UNAVAILABLE
    national_id: str = UNAVAILABLE
    mobile: str = UNAVAILABLE
    email: str = UNAVAILABLE
    date_of_birth: str = UNAVAILABLE
    nationality: str = UNAVAILABLE
    acr: str = UNAVAILABLE
    trust_tier: TrustTier = TrustTier.UNKNOWN

    def value_or_none(self, field_name: str) -> str | None:
        value = getattr(self, field_name)
        return value if is_available(value) else None
