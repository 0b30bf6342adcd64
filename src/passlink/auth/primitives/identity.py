"""Identity normalization and trust-tier determination.

The provider's userinfo payload is loosely shaped: field names vary between
the English and Arabic variants, alternate spellings and the OIDC standard
claims. This module is the only place that looks at that loose shape; it
converts it straight into a ``CanonicalIdentity``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from passlink.auth.models.identity import UNAVAILABLE, CanonicalIdentity, TrustTier
from passlink.config import ACR_HIGH, ACR_LOW, ACR_SUBSTANTIAL

logger = logging.getLogger(__name__)

RawProfile = Mapping[str, Any]

# Ordered by preference: provider primary, provider secondary language,
# alternate naming, OIDC standard claim.
FIRST_NAME_FIELDS = ("firstnameEN", "firstnameAR", "firstName", "given_name")
LAST_NAME_FIELDS = ("lastnameEN", "lastnameAR", "lastName", "family_name")
FULL_NAME_FIELDS = ("fullnameEN", "fullnameAR", "fullName")
MOBILE_FIELDS = ("mobile", "phoneNumber", "phone", "phone_number")
EMAIL_FIELDS = ("email", "emailAddress")
DATE_OF_BIRTH_FIELDS = ("dob", "dateOfBirth", "birthdate")
NATIONALITY_FIELDS = ("nationalityEN", "nationalityAR", "nationality", "country")
UUID_FIELDS = ("uuid", "sub")
USER_TYPE_FIELDS = ("userType", "user_type")

# The subject is an opaque account identifier, not a government ID, so it
# must never appear in this list.
NATIONAL_ID_FIELDS = ("idn", "emiratesId")

ACR_TIERS = {
    ACR_LOW: TrustTier.TIER1,
    ACR_SUBSTANTIAL: TrustTier.TIER2,
    ACR_HIGH: TrustTier.TIER3,
}

USER_TYPE_LABELS = {
    "SOP1": TrustTier.TIER1,
    "SOP2": TrustTier.TIER2,
    "SOP3": TrustTier.TIER3,
    "TIER1": TrustTier.TIER1,
    "TIER2": TrustTier.TIER2,
    "TIER3": TrustTier.TIER3,
}

NATIONAL_ID_PATTERN = re.compile(r"^\d{15}$")


def clean_national_id(value: str | None) -> str:
    """Strip the dash and space separators the ID is often printed with."""
    if not value:
        return ""
    return re.sub(r"[\s-]", "", value)


def is_well_formed_national_id(value: str | None) -> bool:
    """True for exactly 15 digits once separators are removed."""
    return bool(NATIONAL_ID_PATTERN.match(clean_national_id(value)))


def first_present(profile: RawProfile, fields: tuple[str, ...]) -> str | None:
    """Return the first present, non-empty value among the variant names."""
    for name in fields:
        value = profile.get(name)
        if value is None:
            continue
        text = str(value).strip()
        if text and text != UNAVAILABLE:
            return text
    return None


def determine_tier(
    user_type: str | None, acr: str | None, national_id: str | None
) -> TrustTier:
    """Determine the trust tier from the three channels the provider uses.

    Precedence:
        1. An explicit tier/user-type label on the profile
        2. The ACR claim through the fixed low/substantial/high table
        3. A well-formed national ID, which implies at least TIER2

    Args:
        user_type: Raw user-type label, e.g. ``"SOP2"``
        acr: Authentication context class reference
        national_id: National ID value as provided

    Returns:
        TrustTier: Resolved tier, ``UNKNOWN`` if no channel resolves
    """
    if user_type:
        tier = USER_TYPE_LABELS.get(user_type.strip().upper())
        if tier is not None:
            return tier
        logger.warning(f"Unrecognized user type label: {user_type}")

    if acr:
        tier = ACR_TIERS.get(acr.strip())
        if tier is not None:
            return tier
        logger.warning(f"Unknown ACR value: {acr}")

    if is_well_formed_national_id(national_id):
        return TrustTier.TIER2

    return TrustTier.UNKNOWN


def normalize_profile(
    profile: RawProfile, id_token_claims: Mapping[str, Any] | None = None
) -> CanonicalIdentity:
    """Map a raw userinfo payload into a ``CanonicalIdentity``.

    Args:
        profile: Raw userinfo JSON object
        id_token_claims: Verified ID token claims, used for ``acr`` when the
            userinfo payload does not carry it

    Returns:
        CanonicalIdentity: Fully populated identity, sentinel for absent fields
    """
    claims = id_token_claims or {}

    subject = first_present(profile, ("sub",)) or first_present(claims, ("sub",))
    if subject is None:
        subject = UNAVAILABLE

    first_name = first_present(profile, FIRST_NAME_FIELDS)
    last_name = first_present(profile, LAST_NAME_FIELDS)

    full_name = first_present(profile, FULL_NAME_FIELDS)
    if full_name is None:
        joined = " ".join(part for part in (first_name, last_name) if part)
        full_name = joined or first_present(profile, ("name",))

    national_id = first_present(profile, NATIONAL_ID_FIELDS)
    acr = first_present(profile, ("acr",)) or first_present(claims, ("acr",))
    user_type = first_present(profile, USER_TYPE_FIELDS)

    tier = determine_tier(user_type, acr, national_id)

    identity = CanonicalIdentity(
        subject=subject,
        uuid=first_present(profile, UUID_FIELDS) or UNAVAILABLE,
        full_name=full_name or UNAVAILABLE,
        first_name=first_name or UNAVAILABLE,
        last_name=last_name or UNAVAILABLE,
        national_id=national_id or UNAVAILABLE,
        mobile=first_present(profile, MOBILE_FIELDS) or UNAVAILABLE,
        email=first_present(profile, EMAIL_FIELDS) or UNAVAILABLE,
        date_of_birth=first_present(profile, DATE_OF_BIRTH_FIELDS) or UNAVAILABLE,
        nationality=first_present(profile, NATIONALITY_FIELDS) or UNAVAILABLE,
        acr=acr or UNAVAILABLE,
        trust_tier=tier,
    )

    logger.debug(
        f"Normalized profile: fields={sorted(profile.keys())}, "
        f"tier={identity.trust_tier.value}"
    )
    return identity
