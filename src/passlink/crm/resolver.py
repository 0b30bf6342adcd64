"""Lookup of an existing CRM account for a provider identity."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from passlink.auth.models.identity import CanonicalIdentity
from passlink.crm.client import CRMClient
from passlink.crm.errors import CRMLookupError
from passlink.crm.models import LINK_EMAIL, LINK_NATIONAL_ID, LINK_UUID, CRMAccount
from passlink.shared.redaction import redact_email

logger = logging.getLogger(__name__)


def normalize_phone(phone: str) -> str:
    """Return ``phone`` with exactly one leading ``+``."""
    digits = phone.strip().replace(" ", "")
    return digits if digits.startswith("+") else f"+{digits}"


class CRMIdentityResolver:
    """Finds the CRM account already associated with an identity.

    Linkage custom fields are searched before plain email and phone because
    they were written by a previous login and are authoritative.
    """

    def __init__(self, client: CRMClient):
        self._client = client

    def _search_plan(
        self, identity: CanonicalIdentity
    ) -> list[tuple[str, Callable[[str], dict[str, Any]], str | None]]:
        return [
            (
                "linkage email",
                lambda v: {"customFields": {LINK_EMAIL: v}},
                identity.value_or_none("email"),
            ),
            (
                "linkage uuid",
                lambda v: {"customFields": {LINK_UUID: v}},
                identity.value_or_none("uuid"),
            ),
            ("email", lambda v: {"email": v}, identity.value_or_none("email")),
            (
                "linkage national id",
                lambda v: {"customFields": {LINK_NATIONAL_ID: v}},
                identity.value_or_none("national_id"),
            ),
            (
                "phone",
                lambda v: {"phone": normalize_phone(v)},
                identity.value_or_none("mobile"),
            ),
        ]

    async def find_existing(self, identity: CanonicalIdentity) -> CRMAccount | None:
        """Return the first account matched in precedence order, or None.

        A failed lookup for one identifier counts as no match for that
        identifier; the remaining identifiers are still tried.
        """
        for label, criteria, value in self._search_plan(identity):
            if value is None:
                continue

            shown = redact_email(value) if "email" in label else label
            logger.debug(f"Searching CRM by {label} ({shown})")

            try:
                account = await self._client.search_users(criteria(value))
            except CRMLookupError as e:
                logger.warning(
                    f"CRM lookup by {label} failed (status {e.status_code}): "
                    f"{e.detail}"
                )
                continue

            if account is not None:
                logger.info(f"Found CRM account {account.id} by {label}")
                return account

        logger.info("No existing CRM account matched the identity")
        return None
