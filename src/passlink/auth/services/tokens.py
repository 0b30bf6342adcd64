"""Authorization code exchange against the provider's token endpoint.

Implements RFC 6749 Section 4.1.3 with the PKCE code verifier (RFC 7636),
sending client credentials in the form body as the provider requires.
"""

from __future__ import annotations

import asyncio
import logging

import httpx
from pydantic import ValidationError

from passlink.auth.models.errors import (
    NameResolutionError,
    TokenExchangeError,
    TokenExchangeErrorKind,
)
from passlink.auth.models.tokens import TokenErrorResponse, TokenRequest, TokenSet
from passlink.auth.services.transport import (
    HttpRequest,
    HttpxTransport,
    PinnedAddressTransport,
    RetryingSender,
)
from passlink.config import Settings
from passlink.shared.redaction import sanitize_payload

logger = logging.getLogger(__name__)


class TokenExchangeClient:
    """Exchanges authorization codes for a ``TokenSet``.

    Network calls go through a ``RetryingSender`` (three attempts, linear
    backoff, pinned-address fallback on repeated DNS failures). The whole
    operation, retries included, is bounded by a single timeout.
    """

    def __init__(
        self,
        settings: Settings,
        sender: RetryingSender | None = None,
        timeout: float | None = None,
    ):
        """Initialize the token exchange client.

        Args:
            settings: Provider endpoints and client credentials
            sender: Retrying sender, built from the default transports if omitted
            timeout: Overall bound in seconds, defaults to the configured value.
                Each attempt is bounded by the shorter of this and the HTTP
                timeout
        """
        self._settings = settings
        self.timeout = timeout if timeout is not None else settings.token_exchange_timeout
        self.attempt_timeout = min(settings.http_timeout, self.timeout)
        self._sender = sender or RetryingSender(
            primary=HttpxTransport(timeout=self.attempt_timeout),
            fallback=PinnedAddressTransport(timeout=self.attempt_timeout),
        )

    async def exchange_code(self, code: str, code_verifier: str | None) -> TokenSet:
        """Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the callback
            code_verifier: PKCE verifier generated at login start

        Returns:
            TokenSet: Tokens issued by the provider

        Raises:
            TokenExchangeError: On transport failure, timeout, provider
                rejection or a response without an access token
        """
        token_request = TokenRequest(
            token_endpoint=self._settings.token_endpoint,
            code=code,
            redirect_uri=self._settings.redirect_uri,
            client_id=self._settings.client_id,
            client_secret=self._settings.client_secret.get_secret_value(),
            code_verifier=code_verifier,
        )
        form_data = token_request.to_form_data()

        logger.debug(
            f"Exchanging authorization code at {token_request.token_endpoint}: "
            f"{sanitize_payload(form_data)}"
        )

        request = HttpRequest(
            method="POST",
            url=token_request.token_endpoint,
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Accept": "application/json",
            },
            data=form_data,
        )

        try:
            response = await asyncio.wait_for(
                self._sender.send(request), timeout=self.timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.error(f"Token exchange timed out after {self.timeout}s")
            raise TokenExchangeError(
                "The identity provider did not respond in time. Please try again.",
                kind=TokenExchangeErrorKind.TIMEOUT,
                detail=str(e) or type(e).__name__,
            ) from e
        except (NameResolutionError, httpx.TransportError) as e:
            logger.error(f"Token exchange network failure: {type(e).__name__}: {e}")
            raise TokenExchangeError(
                "Could not reach the identity provider. Please try again.",
                kind=TokenExchangeErrorKind.NETWORK,
                detail=str(e),
            ) from e

        return self._parse_token_response(response)

    def _parse_token_response(self, response: httpx.Response) -> TokenSet:
        """Parse the token endpoint response.

        Raises:
            TokenExchangeError: For error statuses and unusable bodies
        """
        if not response.is_success:
            try:
                error = TokenErrorResponse(**response.json())
            except (ValueError, TypeError, ValidationError):
                error = TokenErrorResponse(error_description=response.text[:200])

            logger.error(
                f"Token exchange failed with {response.status_code}: "
                f"{error.error} - {error.error_description}"
            )
            if error.error == "invalid_client":
                logger.error(
                    "Provider rejected the client credentials; check that the "
                    "client ID and secret belong to this provider environment"
                )

            raise TokenExchangeError(
                "The identity provider rejected the login. Please try again.",
                kind=TokenExchangeErrorKind.PROVIDER_REJECTED,
                status_code=response.status_code,
                provider_error=error.error,
                detail=error.error_description,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TokenExchangeError(
                "The identity provider returned an invalid response.",
                kind=TokenExchangeErrorKind.INVALID_RESPONSE,
                status_code=response.status_code,
                detail="Token response is not JSON",
            ) from e

        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise TokenExchangeError(
                "The identity provider returned an invalid response.",
                kind=TokenExchangeErrorKind.INVALID_RESPONSE,
                status_code=response.status_code,
                detail="Token response missing required access_token",
            )

        try:
            token_set = TokenSet(**payload)
        except ValidationError as e:
            raise TokenExchangeError(
                "The identity provider returned an invalid response.",
                kind=TokenExchangeErrorKind.INVALID_RESPONSE,
                status_code=response.status_code,
                detail=f"Invalid token response format: {e.error_count()} errors",
            ) from e

        logger.info("Token exchange successful")
        return token_set

    async def close(self) -> None:
        """Close the HTTP transports and clean up resources."""
        await self._sender.close()
