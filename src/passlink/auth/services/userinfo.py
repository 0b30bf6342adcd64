"""UserInfo endpoint client (OpenID Connect Core 1.0, Section 5.3)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from passlink.auth.models.errors import ProfileFetchError
from passlink.config import Settings

logger = logging.getLogger(__name__)


class UserInfoFetcher:
    """Retrieves the raw profile for an access token."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None):
        self._settings = settings
        self._http_client = http_client or httpx.AsyncClient(
            timeout=settings.http_timeout
        )

    async def fetch_profile(self, access_token: str) -> dict[str, Any]:
        """Fetch the raw userinfo payload.

        Args:
            access_token: Bearer token from the token exchange

        Returns:
            The userinfo JSON object, untouched

        Raises:
            ProfileFetchError: On transport failure, any non-2xx status or a
                body that is not a JSON object
        """
        try:
            response = await self._http_client.get(
                self._settings.userinfo_endpoint,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise ProfileFetchError(
                "Could not retrieve your profile from the identity provider.",
                detail=f"HTTP error during userinfo request: {e}",
            ) from e

        if not response.is_success:
            description = None
            try:
                body = response.json()
                description = body.get("error_description") or body.get("error")
            except (ValueError, AttributeError):
                pass
            logger.error(
                f"UserInfo request failed with status {response.status_code}: "
                f"{description or 'no description'}"
            )
            raise ProfileFetchError(
                "Could not retrieve your profile from the identity provider.",
                status_code=response.status_code,
                detail=description
                or f"UserInfo request failed with status {response.status_code}",
            )

        try:
            profile = response.json()
        except ValueError as e:
            raise ProfileFetchError(
                "Could not retrieve your profile from the identity provider.",
                status_code=response.status_code,
                detail="UserInfo response is not JSON",
            ) from e

        if not isinstance(profile, dict):
            raise ProfileFetchError(
                "Could not retrieve your profile from the identity provider.",
                status_code=response.status_code,
                detail="UserInfo response is not a JSON object",
            )

        logger.info(f"User info fetched ({len(profile)} fields)")
        return profile

    async def close(self) -> None:
        await self._http_client.aclose()
