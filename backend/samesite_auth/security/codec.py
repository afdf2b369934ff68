"""
Signed cookie values.

Format::

    {user_id}|{expiration}|{token}|{hex hmac}

The MAC is HMAC-SHA256 over ``user_id|expiration|token`` with a key derived
from the process secret *and* the scheme, so a ``logged_in`` value can never
be replayed as an ``auth`` value.  Encoding is deterministic: the same tuple
always yields the same string.

Rotating the secret invalidates every outstanding cookie.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from samesite_auth.core.errors import (
    CookieExpired,
    InvalidRequest,
    InvalidUser,
    SignatureError,
)

AUTH_SCHEME = "auth"
SECURE_AUTH_SCHEME = "secure_auth"
LOGGED_IN_SCHEME = "logged_in"
SCHEMES = (AUTH_SCHEME, SECURE_AUTH_SCHEME, LOGGED_IN_SCHEME)

GRACE_PERIOD = timedelta(hours=12)

_SEP = "|"


@dataclass(frozen=True)
class CookiePayload:
    user_id: str
    expires_at: datetime
    scheme: str
    token: str


class CookieCodec:
    """Packs and signs (user, expiration, scheme, token) tuples."""

    def __init__(self, secret: str, *, grace_period: timedelta = GRACE_PERIOD) -> None:
        if not secret:
            raise ValueError("cookie secret must not be empty")
        self._secret = secret.encode()
        self._grace_period = grace_period
        self._keys = {scheme: self._derive_key(scheme) for scheme in SCHEMES}

    def _derive_key(self, scheme: str) -> bytes:
        return hmac.new(self._secret, scheme.encode(), hashlib.sha256).digest()

    def _key(self, scheme: str) -> bytes:
        try:
            return self._keys[scheme]
        except KeyError:
            raise InvalidRequest(f"unknown cookie scheme: {scheme!r}") from None

    def _sign(self, scheme: str, user_id: str, expiration: int, token: str) -> str:
        message = _SEP.join((user_id, str(expiration), token)).encode()
        return hmac.new(self._key(scheme), message, hashlib.sha256).hexdigest()

    def encode(self, user_id: str, expires_at: datetime, scheme: str, token: str) -> str:
        if not user_id or _SEP in user_id:
            raise InvalidUser(f"user id cannot be packed into a cookie: {user_id!r}")
        if not token or _SEP in token:
            raise InvalidRequest("token must be non-empty and must not contain '|'")
        expiration = int(expires_at.timestamp())
        mac = self._sign(scheme, user_id, expiration, token)
        return _SEP.join((user_id, str(expiration), token, mac))

    def decode(
        self,
        value: str,
        scheme: str,
        *,
        now: datetime | None = None,
        grace: bool = False,
    ) -> CookiePayload:
        """
        Verify *value* for *scheme* and return its payload.

        ``grace=True`` accepts cookies up to the grace period past their
        expiration (in-flight requests, clock skew).
        """
        parts = value.split(_SEP) if value else []
        if len(parts) != 4:
            raise SignatureError("malformed cookie value")
        user_id, expiration_raw, token, mac = parts
        try:
            expiration = int(expiration_raw)
        except ValueError:
            raise SignatureError("malformed cookie expiration") from None

        expected = self._sign(scheme, user_id, expiration, token)
        if not hmac.compare_digest(expected, mac):
            raise SignatureError("cookie signature mismatch")

        expires_at = datetime.fromtimestamp(expiration, timezone.utc)
        limit = expires_at + self._grace_period if grace else expires_at
        current = now or datetime.now(timezone.utc)
        if current > limit:
            raise CookieExpired(f"cookie expired at {expires_at.isoformat()}")

        return CookiePayload(
            user_id=user_id, expires_at=expires_at, scheme=scheme, token=token
        )
