"""CRM account orchestration for an authenticated identity.

Runs the sequence that turns a provider identity into a one-time CRM login
URL::

    TIER_CHECK -> LOOKUP -> (FOUND | REGISTER) -> LINK_ATTRIBUTES -> ISSUE_LOGIN_URL

Tier check, registration and login URL failures abort the sequence.
Individual lookups degrade to "no match" and linking is best-effort.
"""

from __future__ import annotations

import logging
import secrets
import string
import time

from passlink.auth.models.identity import UNAVAILABLE, CanonicalIdentity, TrustTier
from passlink.auth.primitives.identity import is_well_formed_national_id
from passlink.config import Settings
from passlink.crm.client import CRMClient
from passlink.crm.errors import (
    CRMLinkError,
    TrustTierError,
    UnknownAccountTypeError,
)
from passlink.crm.models import (
    LINK_EMAIL,
    LINK_FULL_NAME,
    LINK_MOBILE,
    LINK_NATIONAL_ID,
    LINK_NATIONALITY,
    LINK_UUID,
    CRMAccount,
    CRMLoginOutcome,
    LinkStatus,
    RegistrationRequest,
)
from passlink.crm.nationality import to_alpha2
from passlink.crm.resolver import CRMIdentityResolver, normalize_phone
from passlink.shared.redaction import mask_secret

logger = logging.getLogger(__name__)

PASSWORD_LENGTH = 16
PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*"

PLACEHOLDER_FIRST_NAME = "User"
PLACEHOLDER_LAST_NAME = "Account"
PLACEHOLDER_PHONE = "+971500000000"

UNKNOWN_TIER_MESSAGE = (
    "Your account type could not be determined. "
    "Please try again or contact support."
)
INSUFFICIENT_TIER_MESSAGE = (
    "Your account is not verified to the level required. "
    "Please upgrade your account with the identity provider and try again."
)
INVALID_NATIONAL_ID_MESSAGE = (
    "Your national ID could not be verified. Please contact support."
)


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """Random password for accounts created on the user's behalf."""
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


class CRMAccountOrchestrator:
    """Resolves or registers the CRM account for an identity and signs it in."""

    def __init__(
        self,
        settings: Settings,
        client: CRMClient | None = None,
        resolver: CRMIdentityResolver | None = None,
    ):
        self._settings = settings
        self._client = client if client is not None else CRMClient(settings)
        self._resolver = (
            resolver if resolver is not None else CRMIdentityResolver(self._client)
        )

    # ================================
    # TIER_CHECK
    # ================================

    def check_tier(self, identity: CanonicalIdentity) -> None:
        """Reject identities whose assurance level does not allow access.

        Raises:
            UnknownAccountTypeError: If no tier could be determined
            TrustTierError: If the tier is too low, a required national ID is
                missing or a present national ID is malformed
        """
        if identity.trust_tier is TrustTier.UNKNOWN:
            logger.warning(f"Rejected identity {identity.subject}: unknown tier")
            raise UnknownAccountTypeError(UNKNOWN_TIER_MESSAGE)

        national_id = identity.value_or_none("national_id")

        if self._settings.require_national_id and (
            identity.trust_tier is TrustTier.TIER1 or national_id is None
        ):
            logger.warning(
                f"Rejected identity {identity.subject}: tier "
                f"{identity.trust_tier.value}, national ID present: "
                f"{national_id is not None}"
            )
            raise TrustTierError(INSUFFICIENT_TIER_MESSAGE)

        if national_id is not None and not is_well_formed_national_id(national_id):
            logger.warning(
                f"Rejected identity {identity.subject}: malformed national ID"
            )
            raise TrustTierError(INVALID_NATIONAL_ID_MESSAGE)

    # ================================
    # LOOKUP / REGISTER
    # ================================

    def build_registration(self, identity: CanonicalIdentity) -> RegistrationRequest:
        """Registration body with placeholders for unavailable fields."""
        email = identity.value_or_none("email") or (
            f"user_{int(time.time() * 1000)}"
            f"@{self._settings.crm_placeholder_email_domain}"
        )
        mobile = identity.value_or_none("mobile")

        return RegistrationRequest(
            first_name=identity.value_or_none("first_name") or PLACEHOLDER_FIRST_NAME,
            last_name=identity.value_or_none("last_name") or PLACEHOLDER_LAST_NAME,
            phone=normalize_phone(mobile) if mobile else PLACEHOLDER_PHONE,
            email=email,
            password=generate_password(),
            country=to_alpha2(
                identity.value_or_none("nationality"),
                self._settings.crm_default_country,
            ),
        )

    async def resolve_or_register(
        self, identity: CanonicalIdentity
    ) -> tuple[CRMAccount, bool]:
        """Find the identity's account, registering one if none exists.

        Returns:
            The account and whether it was created by this call

        Raises:
            RegistrationError: If registration fails
        """
        account = await self._resolver.find_existing(identity)
        if account is not None:
            return account, False

        request = self.build_registration(identity)
        logger.debug(
            f"Generated registration password {mask_secret(request.password)} "
            f"for identity {identity.subject}"
        )
        account = await self._client.register_user(request)
        return account, True

    # ================================
    # LINK_ATTRIBUTES
    # ================================

    @staticmethod
    def linkage_fields(identity: CanonicalIdentity) -> dict[str, str]:
        def value(field_name: str) -> str:
            return identity.value_or_none(field_name) or ""

        fields = {
            LINK_UUID: value("uuid"),
            LINK_EMAIL: value("email"),
            LINK_FULL_NAME: value("full_name"),
            LINK_MOBILE: value("mobile"),
        }
        if identity.national_id != UNAVAILABLE:
            fields[LINK_NATIONAL_ID] = identity.national_id
        if identity.nationality != UNAVAILABLE:
            fields[LINK_NATIONALITY] = identity.nationality
        return fields

    async def link_identity(
        self, account: CRMAccount, identity: CanonicalIdentity
    ) -> LinkStatus:
        """Write linkage attributes onto the account.

        Never raises; a failure is logged and reported as ``DEGRADED``.
        """
        try:
            await self._client.update_custom_fields(
                account.id, self.linkage_fields(identity)
            )
        except CRMLinkError as e:
            logger.warning(
                f"Linkage update failed for CRM account {account.id} "
                f"(status {e.status_code}): {e.detail}"
            )
            return LinkStatus.DEGRADED

        logger.info(f"Linked identity {identity.subject} to CRM account {account.id}")
        return LinkStatus.OK

    # ================================
    # ISSUE_LOGIN_URL
    # ================================

    async def get_direct_login_url(self, account: CRMAccount) -> str:
        """One-time login URL for the account.

        Raises:
            CRMLoginUrlError: If the CRM does not issue a URL
        """
        return await self._client.direct_login(
            account.id, locale=self._settings.crm_default_locale
        )

    async def run(self, identity: CanonicalIdentity) -> CRMLoginOutcome:
        """Run the full sequence for an identity.

        Raises:
            TrustTierError: From the tier check
            RegistrationError: From registration
            CRMLoginUrlError: From login URL issuance
        """
        self.check_tier(identity)

        account, is_new = await self.resolve_or_register(identity)
        link_status = await self.link_identity(account, identity)
        login_url = await self.get_direct_login_url(account)

        logger.info(
            f"CRM login ready for account {account.id} "
            f"(new: {is_new}, link: {link_status.value})"
        )
        return CRMLoginOutcome(
            login_url=login_url,
            account_id=account.id,
            is_new_account=is_new,
            link_status=link_status,
        )

    async def close(self) -> None:
        await self._client.close()
