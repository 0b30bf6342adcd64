"""Sealing of the login session and of transient authorization state.

Both kinds of value are HS256-signed JWTs carrying an ``exp`` claim. Opening
never raises: a bad signature, a wrong token type or an expired token all
read as "absent", which callers treat exactly like never having logged in.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

import jwt
from pydantic import BaseModel, ConfigDict, ValidationError

from passlink.auth.models.identity import CanonicalIdentity
from passlink.auth.models.security import (
    AUTHORIZATION_STATE_TTL_SECONDS,
    AuthorizationState,
)

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
SESSION_TOKEN_TYPE = "session"
TRANSIENT_TOKEN_TYPE = "auth_state"

STATE_KIND = "state"
NONCE_KIND = "nonce"
VERIFIER_KIND = "pkce"
TRANSIENT_KINDS = (STATE_KIND, NONCE_KIND, VERIFIER_KIND)


class Session(BaseModel):
    """Authenticated session carried between requests."""

    model_config = ConfigDict(frozen=True)

    identity: CanonicalIdentity
    access_token: str
    id_token: str = ""
    expires_at: int  # Unix timestamp, whole seconds

    def is_expired(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now >= self.expires_at

    def remaining_seconds(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        return max(0, int(self.expires_at - now))


class SingleUseRegistry:
    """Records consumed authorization states so each is accepted only once.

    Entries are kept for the lifetime of a transient token and purged on
    write. Safe for concurrent use from independent request flows.
    """

    def __init__(
        self,
        ttl_seconds: float = AUTHORIZATION_STATE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._consumed: dict[str, float] = {}
        self._lock = threading.Lock()

    def consume(self, key: str) -> bool:
        """Mark ``key`` as used.

        Returns:
            True the first time a key is consumed, False on any replay
        """
        now = self._clock()
        with self._lock:
            self._purge(now)
            if key in self._consumed:
                return False
            self._consumed[key] = now + self.ttl_seconds
            return True

    def _purge(self, now: float) -> None:
        expired = [key for key, until in self._consumed.items() if until <= now]
        for key in expired:
            del self._consumed[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._consumed)


class SessionCodec:
    """Seals and opens sessions and transient authorization state."""

    def __init__(
        self,
        secret: str,
        registry: SingleUseRegistry | None = None,
        transient_ttl: int = AUTHORIZATION_STATE_TTL_SECONDS,
    ):
        if not secret:
            raise ValueError("Session signing secret must not be empty")
        self._secret = secret
        self.registry = registry or SingleUseRegistry(ttl_seconds=transient_ttl)
        self.transient_ttl = transient_ttl

    # ================================
    # Session
    # ================================

    def seal(self, session: Session) -> str:
        payload = {
            "typ": SESSION_TOKEN_TYPE,
            "session": session.model_dump(mode="json"),
            "iat": int(time.time()),
            "exp": session.expires_at,
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def open(self, token: str | None) -> Session | None:
        payload = self._decode(token, SESSION_TOKEN_TYPE)
        if payload is None:
            return None
        try:
            return Session.model_validate(payload.get("session"))
        except ValidationError:
            logger.warning("Session token carried an unreadable session payload")
            return None

    # ================================
    # Transient authorization state
    # ================================

    def seal_transient(self, kind: str, value: str, login_id: str) -> str:
        """Seal one short-lived value belonging to a login attempt."""
        now = int(time.time())
        payload = {
            "typ": TRANSIENT_TOKEN_TYPE,
            "kind": kind,
            "lid": login_id,
            "val": value,
            "iat": now,
            "exp": now + self.transient_ttl,
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def open_transient(
        self, kind: str, token: str | None, login_id: str | None = None
    ) -> str | None:
        """Open a transient value, optionally requiring a specific login id."""
        payload = self._decode(token, TRANSIENT_TOKEN_TYPE)
        if payload is None or payload.get("kind") != kind:
            return None
        if login_id is not None and payload.get("lid") != login_id:
            return None
        value = payload.get("val")
        return value if isinstance(value, str) and value else None

    def seal_authorization_state(self, auth_state: AuthorizationState) -> dict[str, str]:
        """Seal the three transient values, keyed by kind."""
        login_id = auth_state.state
        return {
            STATE_KIND: self.seal_transient(STATE_KIND, auth_state.state, login_id),
            NONCE_KIND: self.seal_transient(NONCE_KIND, auth_state.nonce, login_id),
            VERIFIER_KIND: self.seal_transient(
                VERIFIER_KIND, auth_state.code_verifier, login_id
            ),
        }

    def consume_authorization_state(self, state: str) -> bool:
        """Mark a login attempt's state as used; False if it already was."""
        return self.registry.consume(state)

    def _decode(self, token: str | None, token_type: str) -> dict[str, Any] | None:
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError:
            logger.debug(f"Sealed {token_type} token expired")
            return None
        except jwt.PyJWTError as e:
            logger.warning(f"Rejected sealed {token_type} token: {type(e).__name__}")
            return None

        if payload.get("typ") != token_type:
            logger.warning(f"Sealed token has unexpected type for {token_type}")
            return None
        return payload
