"""REST client for the downstream CRM.

Thin wrapper over the four CRM endpoints used by the login flow. Every call
is authenticated with the static bearer token and carries the API version
query parameter. Status handling policy lives in the resolver and
orchestrator; this client only raises typed errors.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from passlink.config import Settings
from passlink.crm.errors import (
    CRMLinkError,
    CRMLoginUrlError,
    CRMLookupError,
    RegistrationError,
    RegistrationFailureReason,
    classify_registration_failure,
)
from passlink.crm.models import CRMAccount, RegistrationRequest
from passlink.shared.redaction import sanitize_payload, sanitize_response_body

logger = logging.getLogger(__name__)

SEARCH_PATH = "/users"
REGISTER_PATH = "/users/new"
UPDATE_PATH = "/users/update"
DIRECT_LOGIN_PATH = "/user/direct_login"


class CRMClient:
    """Async client for account search, registration, update and direct login."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None):
        """Initialize the CRM client.

        Args:
            settings: CRM base URL, token, version and defaults
            http_client: Optional preconfigured client (tests inject a mock)
        """
        self._settings = settings
        self._http_client = http_client or httpx.AsyncClient(
            timeout=settings.http_timeout
        )

    def _url(self, path: str) -> str:
        return f"{self._settings.crm_api_root}{path}"

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._settings.crm_api_token.get_secret_value()}",
        }

    async def _post(self, path: str, body: dict[str, Any]) -> httpx.Response:
        return await self._http_client.post(
            self._url(path),
            params={"version": self._settings.crm_api_version},
            json=body,
            headers=self._headers(),
        )

    async def search_users(self, criteria: dict[str, Any]) -> CRMAccount | None:
        """Search accounts and return the first match.

        Args:
            criteria: ``{"email": ...}``, ``{"phone": ...}`` or
                ``{"customFields": {...}}``

        Returns:
            The first matching account, or None when the result is empty

        Raises:
            CRMLookupError: On transport failure, error status or an
                unreadable response
        """
        try:
            response = await self._post(SEARCH_PATH, criteria)
        except httpx.HTTPError as e:
            raise CRMLookupError(
                "Account search failed", detail=f"HTTP error during search: {e}"
            ) from e

        if not response.is_success:
            raise CRMLookupError(
                "Account search failed",
                status_code=response.status_code,
                detail=sanitize_response_body(response.text),
            )

        try:
            data = response.json()
            if isinstance(data, list) and data:
                return CRMAccount.model_validate(data[0])
        except (ValueError, ValidationError) as e:
            raise CRMLookupError(
                "Account search failed",
                status_code=response.status_code,
                detail=f"Invalid search response format: {e}",
            ) from e

        return None

    async def register_user(self, request: RegistrationRequest) -> CRMAccount:
        """Create a new account.

        Raises:
            RegistrationError: With a fixed reason parsed from the response
        """
        payload = request.to_payload()
        logger.info(f"Registering new CRM account: {sanitize_payload(payload)}")

        try:
            response = await self._post(REGISTER_PATH, payload)
        except httpx.HTTPError as e:
            raise RegistrationError(
                RegistrationFailureReason.UPSTREAM,
                detail=f"HTTP error during registration: {e}",
            ) from e

        logger.debug(f"Register account response status: {response.status_code}")

        if not response.is_success:
            reason = classify_registration_failure(response.status_code, response.text)
            body = sanitize_response_body(response.text, secrets=(request.password,))
            logger.error(
                f"CRM registration failed with {response.status_code} "
                f"({reason.value}): {body}"
            )
            raise RegistrationError(
                reason, status_code=response.status_code, detail=body
            )

        try:
            account = CRMAccount.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise RegistrationError(
                RegistrationFailureReason.UPSTREAM,
                status_code=response.status_code,
                detail=f"Invalid registration response format: {e}",
            ) from e

        logger.info(f"CRM account registered with ID {account.id}")
        return account

    async def update_custom_fields(
        self, account_id: int, custom_fields: dict[str, str]
    ) -> None:
        """Write custom fields onto an account.

        Raises:
            CRMLinkError: On transport failure or error status
        """
        body = {"user": account_id, "customFields": custom_fields}
        logger.debug(f"Updating CRM account {account_id}: {sanitize_payload(body)}")

        try:
            response = await self._post(UPDATE_PATH, body)
        except httpx.HTTPError as e:
            raise CRMLinkError(
                "Account update failed", detail=f"HTTP error during update: {e}"
            ) from e

        if not response.is_success:
            raise CRMLinkError(
                "Account update failed",
                status_code=response.status_code,
                detail=sanitize_response_body(response.text),
            )

    async def direct_login(
        self,
        account_id: int,
        locale: str | None = None,
        redirect_url: str | None = None,
        logout_url: str | None = None,
    ) -> str:
        """Request a one-time login URL for an account.

        Raises:
            CRMLoginUrlError: On transport failure, error status or a
                response without a URL
        """
        body = {
            "user": account_id,
            "locale": locale or self._settings.crm_default_locale,
            "redirectUrl": redirect_url or self._settings.crm_direct_login_redirect,
            "logoutUrl": logout_url or self._settings.crm_direct_login_logout,
            "isClientApi": False,
        }

        try:
            response = await self._post(DIRECT_LOGIN_PATH, body)
        except httpx.HTTPError as e:
            raise CRMLoginUrlError(
                "We could not sign you in to your account. Please try again.",
                detail=f"HTTP error during direct login: {e}",
            ) from e

        if not response.is_success:
            raise CRMLoginUrlError(
                "We could not sign you in to your account. Please try again.",
                status_code=response.status_code,
                detail=sanitize_response_body(response.text),
            )

        try:
            url = response.json().get("url")
        except (ValueError, AttributeError) as e:
            raise CRMLoginUrlError(
                "We could not sign you in to your account. Please try again.",
                status_code=response.status_code,
                detail=f"Invalid direct login response format: {e}",
            ) from e

        if not isinstance(url, str) or not url:
            raise CRMLoginUrlError(
                "We could not sign you in to your account. Please try again.",
                status_code=response.status_code,
                detail="Direct login response missing url",
            )

        logger.info(f"Direct login URL issued for CRM account {account_id}")
        return url

    async def close(self) -> None:
        await self._http_client.aclose()
