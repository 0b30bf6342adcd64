"""Tests for session sealing and single-use transient authorization state."""

import threading
import time

import jwt
import pytest

from passlink.auth.models.security import AuthorizationState
from passlink.auth.services.session import (
    NONCE_KIND,
    STATE_KIND,
    VERIFIER_KIND,
    Session,
    SessionCodec,
    SingleUseRegistry,
)
from tests.conftest import SESSION_SECRET, make_identity


def make_session(expires_in: int = 600) -> Session:
    return Session(
        identity=make_identity(),
        access_token="access-token-xyz",
        id_token="header.payload.sig",
        expires_at=int(time.time()) + expires_in,
    )


class TestSessionCodec:
    def setup_method(self):
        self.codec = SessionCodec(SESSION_SECRET)

    def test_round_trip(self) -> None:
        # Arrange
        session = make_session()

        # Act
        opened = self.codec.open(self.codec.seal(session))

        # Assert
        assert opened == session

    def test_expired_session_is_absent(self) -> None:
        # Arrange
        token = self.codec.seal(make_session(expires_in=-5))

        # Act / Assert
        assert self.codec.open(token) is None

    def test_tampered_token_is_absent(self) -> None:
        # Arrange
        token = self.codec.seal(make_session())
        header, payload, signature = token.split(".")
        flipped = "A" if signature[0] != "A" else "B"

        # Act / Assert
        assert self.codec.open(f"{header}.{payload}.{flipped}{signature[1:]}") is None
        assert self.codec.open(f"{header}.{payload[:-2]}xx.{signature}") is None

    def test_other_secret_is_absent(self) -> None:
        # Arrange
        token = SessionCodec("another-secret-with-at-least-32-chars!").seal(
            make_session()
        )

        # Act / Assert
        assert self.codec.open(token) is None

    def test_missing_token_is_absent(self) -> None:
        assert self.codec.open(None) is None
        assert self.codec.open("") is None

    def test_transient_token_is_not_a_session(self) -> None:
        token = self.codec.seal_transient(STATE_KIND, "state-1", "state-1")
        assert self.codec.open(token) is None

    def test_session_token_carries_expiry(self) -> None:
        # Arrange
        session = make_session()

        # Act
        claims = jwt.decode(
            self.codec.seal(session), SESSION_SECRET, algorithms=["HS256"]
        )

        # Assert
        assert claims["exp"] == session.expires_at

    def test_empty_secret_rejected(self) -> None:
        with pytest.raises(ValueError):
            SessionCodec("")


class TestTransientState:
    def setup_method(self):
        self.codec = SessionCodec(SESSION_SECRET)
        self.auth_state = AuthorizationState(
            state="state-abc", nonce="nonce-abc", code_verifier="v" * 43
        )

    def test_seal_and_open_each_kind(self) -> None:
        # Act
        sealed = self.codec.seal_authorization_state(self.auth_state)

        # Assert
        assert set(sealed) == {STATE_KIND, NONCE_KIND, VERIFIER_KIND}
        assert self.codec.open_transient(STATE_KIND, sealed[STATE_KIND]) == "state-abc"
        assert (
            self.codec.open_transient(NONCE_KIND, sealed[NONCE_KIND], "state-abc")
            == "nonce-abc"
        )
        assert (
            self.codec.open_transient(VERIFIER_KIND, sealed[VERIFIER_KIND], "state-abc")
            == "v" * 43
        )

    def test_kind_must_match(self) -> None:
        sealed = self.codec.seal_authorization_state(self.auth_state)
        assert self.codec.open_transient(STATE_KIND, sealed[NONCE_KIND]) is None

    def test_bound_to_login_id(self) -> None:
        sealed = self.codec.seal_authorization_state(self.auth_state)
        assert self.codec.open_transient(NONCE_KIND, sealed[NONCE_KIND], "other") is None

    def test_expires_after_ttl(self) -> None:
        # Arrange
        codec = SessionCodec(SESSION_SECRET, transient_ttl=-1)
        token = codec.seal_transient(STATE_KIND, "state-abc", "state-abc")

        # Act / Assert
        assert codec.open_transient(STATE_KIND, token) is None

    def test_state_is_single_use(self) -> None:
        assert self.codec.consume_authorization_state("state-abc") is True
        assert self.codec.consume_authorization_state("state-abc") is False
        assert self.codec.consume_authorization_state("state-def") is True


class TestSingleUseRegistry:
    def test_entries_expire(self) -> None:
        # Arrange
        now = [100.0]
        registry = SingleUseRegistry(ttl_seconds=10, clock=lambda: now[0])
        registry.consume("a")

        # Act
        now[0] = 111.0
        registry.consume("b")

        # Assert
        assert len(registry) == 1
        assert registry.consume("a") is True

    def test_concurrent_consumers_accept_once(self) -> None:
        # Arrange
        registry = SingleUseRegistry()
        results: list[bool] = []
        lock = threading.Lock()

        def worker():
            accepted = registry.consume("shared-state")
            with lock:
                results.append(accepted)

        threads = [threading.Thread(target=worker) for _ in range(16)]

        # Act
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # Assert
        assert results.count(True) == 1
        assert results.count(False) == 15
