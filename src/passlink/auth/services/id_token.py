"""ID token verification (OpenID Connect Core 1.0, Section 3.1.3.7).

The provider's key set is fetched on every validation rather than pinned,
so key rotation on the provider side never requires a restart here.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
import jwt

from passlink.auth.models.errors import TokenValidationError
from passlink.config import Settings

logger = logging.getLogger(__name__)

SIGNING_ALGORITHMS = ["RS256", "RS384", "RS512", "ES256", "PS256"]
CLOCK_LEEWAY_SECONDS = 30


class IdTokenValidator:
    """Validates ID token signature, issuer, audience, nonce and expiry."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        leeway: int = CLOCK_LEEWAY_SECONDS,
    ):
        self._settings = settings
        self.leeway = leeway
        self._http_client = http_client or httpx.AsyncClient(
            timeout=settings.http_timeout
        )

    async def validate(self, id_token: str, expected_nonce: str) -> dict[str, Any]:
        """Validate an ID token and return its claims.

        Args:
            id_token: Compact JWS from the token response
            expected_nonce: Nonce generated at login start

        Returns:
            Verified claims

        Raises:
            TokenValidationError: If any check fails
        """
        if not id_token:
            raise TokenValidationError(
                "Identity token could not be verified.",
                detail="Token response did not include an id_token",
            )

        try:
            header = jwt.get_unverified_header(id_token)
        except jwt.PyJWTError as e:
            raise TokenValidationError(
                "Identity token could not be verified.",
                detail=f"Malformed ID token header: {e}",
            ) from e

        signing_key = await self._get_signing_key(header)

        try:
            claims = jwt.decode(
                id_token,
                key=signing_key.key,
                algorithms=SIGNING_ALGORITHMS,
                audience=self._settings.client_id,
                issuer=self._settings.issuer,
                leeway=self.leeway,
                options={"require": ["exp", "iss", "aud"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenValidationError(
                "Identity token has expired.", detail=str(e)
            ) from e
        except jwt.PyJWTError as e:
            raise TokenValidationError(
                "Identity token could not be verified.",
                detail=f"{type(e).__name__}: {e}",
            ) from e

        if claims.get("nonce") != expected_nonce:
            raise TokenValidationError(
                "Identity token could not be verified.",
                detail="ID token nonce does not match expected nonce",
            )

        logger.info("ID token validated")
        return claims

    async def _get_signing_key(self, header: dict[str, Any]) -> jwt.PyJWK:
        """Fetch the current key set and select the key matching ``kid``."""
        jwks_uri = self._settings.jwks_uri
        logger.debug(f"Fetching JWKS for ID token validation from {jwks_uri}")

        try:
            response = await self._http_client.get(
                jwks_uri, headers={"Accept": "application/json"}
            )
            response.raise_for_status()
            jwk_set = jwt.PyJWKSet.from_dict(response.json())
        except (httpx.HTTPError, ValueError, jwt.PyJWTError) as e:
            raise TokenValidationError(
                "Identity token could not be verified.",
                detail=f"Failed to fetch JWKS from {jwks_uri}: {e}",
            ) from e

        kid = header.get("kid")
        signing_keys = [
            key
            for key in jwk_set.keys
            if getattr(key, "public_key_use", None) in (None, "sig")
        ]
        if kid is not None:
            for key in signing_keys:
                if key.key_id == kid:
                    return key
            raise TokenValidationError(
                "Identity token could not be verified.",
                detail=f"No key with kid {kid!r} in the published key set",
            )

        if len(signing_keys) == 1:
            return signing_keys[0]

        raise TokenValidationError(
            "Identity token could not be verified.",
            detail="ID token has no kid and the key set is ambiguous",
        )

    async def close(self) -> None:
        await self._http_client.aclose()
