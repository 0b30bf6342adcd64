"""ID token validation against a real RSA key set."""

import time
from unittest.mock import AsyncMock

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from passlink.auth.models.errors import TokenValidationError
from passlink.auth.services.id_token import IdTokenValidator
from passlink.shared.errors import ErrorCategory
from tests.conftest import json_response, make_settings


def generate_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def public_jwk(private_key, kid: str) -> dict:
    jwk = RSAAlgorithm.to_jwk(private_key.public_key(), as_dict=True)
    jwk.update({"kid": kid, "use": "sig", "alg": "RS256"})
    return jwk


class TestIdTokenValidator:
    @classmethod
    def setup_class(cls):
        cls.private_key = generate_key()
        cls.other_key = generate_key()

    def setup_method(self):
        self.settings = make_settings()
        self.validator = IdTokenValidator(self.settings)
        self.validator._http_client = AsyncMock()
        self.validator._http_client.get.return_value = json_response(
            200, {"keys": [public_jwk(self.private_key, "key-1")]}
        )
        self.nonce = "nonce-abc"

    def make_token(self, key=None, kid="key-1", **overrides) -> str:
        now = int(time.time())
        claims = {
            "iss": self.settings.issuer,
            "aud": self.settings.client_id,
            "sub": "subject-1",
            "nonce": self.nonce,
            "iat": now,
            "exp": now + 300,
            "acr": "urn:safelayer:tws:policies:authentication:level:substantial",
        }
        claims.update(overrides)
        headers = {"kid": kid} if kid else None
        return jwt.encode(
            claims, key or self.private_key, algorithm="RS256", headers=headers
        )

    async def test_valid_token_returns_claims(self):
        # Act
        claims = await self.validator.validate(self.make_token(), self.nonce)

        # Assert
        assert claims["sub"] == "subject-1"
        assert claims["acr"].endswith("substantial")
        self.validator._http_client.get.assert_awaited_once()
        assert self.validator._http_client.get.call_args[0][0] == self.settings.jwks_uri

    async def test_key_set_fetched_on_every_validation(self):
        # Act
        await self.validator.validate(self.make_token(), self.nonce)
        await self.validator.validate(self.make_token(), self.nonce)

        # Assert
        assert self.validator._http_client.get.await_count == 2

    async def test_nonce_mismatch(self):
        with pytest.raises(TokenValidationError) as exc_info:
            await self.validator.validate(self.make_token(), "other-nonce")

        assert exc_info.value.category is ErrorCategory.TOKEN_VALIDATION_FAILED
        assert "nonce" in exc_info.value.detail

    async def test_wrong_audience(self):
        with pytest.raises(TokenValidationError):
            await self.validator.validate(self.make_token(aud="someone-else"), self.nonce)

    async def test_wrong_issuer(self):
        with pytest.raises(TokenValidationError):
            await self.validator.validate(
                self.make_token(iss="https://evil.example.com"), self.nonce
            )

    async def test_expired_token(self):
        # Arrange
        past = int(time.time()) - 3600
        token = self.make_token(iat=past - 300, exp=past)

        # Act / Assert
        with pytest.raises(TokenValidationError) as exc_info:
            await self.validator.validate(token, self.nonce)

        assert exc_info.value.message == "Identity token has expired."

    async def test_signed_by_unknown_key(self):
        with pytest.raises(TokenValidationError):
            await self.validator.validate(
                self.make_token(key=self.other_key), self.nonce
            )

    async def test_unknown_kid(self):
        with pytest.raises(TokenValidationError) as exc_info:
            await self.validator.validate(self.make_token(kid="rotated"), self.nonce)

        assert "rotated" in exc_info.value.detail

    async def test_token_without_kid_uses_single_key(self):
        claims = await self.validator.validate(self.make_token(kid=None), self.nonce)
        assert claims["sub"] == "subject-1"

    async def test_missing_token(self):
        with pytest.raises(TokenValidationError):
            await self.validator.validate("", self.nonce)

    async def test_malformed_token(self):
        with pytest.raises(TokenValidationError):
            await self.validator.validate("not-a-jwt", self.nonce)

    async def test_key_set_fetch_failure(self):
        # Arrange
        self.validator._http_client.get.side_effect = httpx.ConnectError("refused")

        # Act / Assert
        with pytest.raises(TokenValidationError) as exc_info:
            await self.validator.validate(self.make_token(), self.nonce)

        assert "JWKS" in exc_info.value.detail
