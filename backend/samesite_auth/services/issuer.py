"""
Session issuer – turns (user, remember, secure) into cookie directives.

One ``issue()`` call walks four steps and either finishes all of them or
raises without returning any directive:

    1. Requested  – validate input, pick lifetimes, resolve attributes.
    2. TokenBound – create a server-side token (skipped on renewal).
    3. Encoded    – sign the auth-scheme and logged-in cookie values.
    4. Emitted    – ask the veto predicate, then assemble directives.

A veto happens after the token already exists server-side; the binding is
left in place.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from samesite_auth.core.errors import (
    CookieExpired,
    InvalidRequest,
    InvalidUser,
    SessionCookieError,
    SignatureError,
)
from samesite_auth.core.logging import get_logger, token_hint
from samesite_auth.security.codec import (
    AUTH_SCHEME,
    GRACE_PERIOD,
    LOGGED_IN_SCHEME,
    SECURE_AUTH_SCHEME,
    CookieCodec,
)
from samesite_auth.security.cookies import (
    AttributeSet,
    CookieAttributePolicy,
    CookieContext,
    CookieDirective,
)
from samesite_auth.services.token_store import Clock, Session, TokenStore, utcnow

logger = get_logger(__name__)

REMEMBER_TTL = timedelta(days=14)
SESSION_TTL = timedelta(days=2)
CLEAR_BACKDATE = timedelta(days=365)


@dataclass(frozen=True)
class CookieNames:
    auth: str = "auth_session"
    secure_auth: str = "secure_auth_session"
    logged_in: str = "logged_in_session"

    def for_scheme(self, scheme: str) -> str:
        return {
            AUTH_SCHEME: self.auth,
            SECURE_AUTH_SCHEME: self.secure_auth,
            LOGGED_IN_SCHEME: self.logged_in,
        }[scheme]


@dataclass(frozen=True)
class EmitContext:
    """What the veto predicate sees.  Zeroed / empty when clearing cookies."""

    expire: int
    expiration: int
    user_id: str
    scheme: str
    token: str


@dataclass(frozen=True)
class CookieEvent:
    """Fired once per cookie value right before the veto is consulted."""

    name: str
    value: str
    expire: int
    expiration: int
    user_id: str
    scheme: str
    token: str


def _always_emit(_: EmitContext) -> bool:
    return True


@dataclass
class IssuerHooks:
    """Injected extension points; every one is optional."""

    should_emit: Callable[[EmitContext], bool] = _always_emit
    # (user_id, remember, default_seconds) -> seconds
    expiration_length: Callable[[str, bool, int], int] | None = None
    # (secure, user_id) -> secure
    filter_secure: Callable[[bool, str], bool] | None = None
    # (secure_logged_in, user_id, secure) -> secure_logged_in
    filter_secure_logged_in: Callable[[bool, str, bool], bool] | None = None
    on_set_cookie: list[Callable[[CookieEvent], None]] = field(default_factory=list)


class SessionIssuer:
    """Mints, renews, validates and clears authentication cookies."""

    def __init__(
        self,
        store: TokenStore,
        codec: CookieCodec,
        context: CookieContext,
        *,
        policy: CookieAttributePolicy | None = None,
        names: CookieNames | None = None,
        hooks: IssuerHooks | None = None,
        clock: Clock = utcnow,
        remember_ttl: timedelta = REMEMBER_TTL,
        session_ttl: timedelta = SESSION_TTL,
        grace_period: timedelta = GRACE_PERIOD,
    ) -> None:
        self._store = store
        self._codec = codec
        self._context = context
        self._policy = policy or CookieAttributePolicy()
        self._names = names or CookieNames()
        self._hooks = hooks or IssuerHooks()
        self._clock = clock
        self._remember_ttl = remember_ttl
        self._session_ttl = session_ttl
        self._grace_period = grace_period

    @property
    def store(self) -> TokenStore:
        return self._store

    @property
    def names(self) -> CookieNames:
        return self._names

    # ── Helpers ──────────────────────────────────────────────────

    def _now(self) -> datetime:
        # Cookie expirations are whole seconds
        return self._clock().replace(microsecond=0)

    def _context_for(self, request_is_https: bool | None) -> CookieContext:
        if request_is_https is None:
            return self._context
        return dataclasses.replace(self._context, request_is_https=request_is_https)

    def _lifetime(self, user_id: str, remember: bool) -> timedelta:
        default = self._remember_ttl if remember else self._session_ttl
        if self._hooks.expiration_length is None:
            return default
        seconds = self._hooks.expiration_length(
            user_id, remember, int(default.total_seconds())
        )
        return timedelta(seconds=seconds)

    def _attributes(
        self, user_id: str, secure: bool | None, context: CookieContext
    ) -> AttributeSet:
        attrs = self._policy.attributes_for(secure, context)
        hooks = self._hooks
        if hooks.filter_secure is None and hooks.filter_secure_logged_in is None:
            return attrs

        secure_auth = attrs.secure
        secure_logged_in = attrs.secure_logged_in
        if hooks.filter_secure is not None:
            secure_auth = hooks.filter_secure(secure_auth, user_id)
        if hooks.filter_secure_logged_in is not None:
            secure_logged_in = hooks.filter_secure_logged_in(
                secure_logged_in, user_id, secure_auth
            )
        # Filtered values go back through the SameSite=None check
        return self._policy.finalize(secure_auth, secure_logged_in, context)

    @staticmethod
    def _validate(user_id: str, remember: bool) -> None:
        if not isinstance(user_id, str) or not user_id.strip():
            raise InvalidUser("user id must be a non-empty string")
        if user_id != user_id.strip() or "|" in user_id:
            raise InvalidUser(f"malformed user id: {user_id!r}")
        if not isinstance(remember, bool):
            raise InvalidRequest("remember must be a boolean")

    # ── Issuance ─────────────────────────────────────────────────

    async def issue(
        self,
        user_id: str,
        remember: bool = False,
        secure: bool | None = None,
        token: str | None = None,
        *,
        request_is_https: bool | None = None,
    ) -> list[CookieDirective]:
        """
        Issue the authentication cookies for *user_id*.

        Passing *token* renews an existing session: the token is reused and
        only the expiration is recomputed.
        """
        try:
            return await self._issue(user_id, remember, secure, token, request_is_https)
        except SessionCookieError as exc:
            logger.warning(
                "Cookie issuance aborted: %s: %s",
                type(exc).__name__,
                exc,
                extra={"user_id": user_id if isinstance(user_id, str) else None},
            )
            raise

    async def _issue(
        self,
        user_id: str,
        remember: bool,
        secure: bool | None,
        token: str | None,
        request_is_https: bool | None,
    ) -> list[CookieDirective]:
        # Requested
        self._validate(user_id, remember)
        now = self._now()
        expires_at = now + self._lifetime(user_id, remember)
        grace_until = expires_at + self._grace_period if remember else None
        expire = int(grace_until.timestamp()) if grace_until else 0
        expiration = int(expires_at.timestamp())

        context = self._context_for(request_is_https)
        attrs = self._attributes(user_id, secure, context)
        scheme = SECURE_AUTH_SCHEME if attrs.secure else AUTH_SCHEME

        # TokenBound
        if token is None:
            token = await self._store.create(user_id, expires_at, grace_until=grace_until)
        else:
            logger.info(
                "Renewing session cookies",
                extra={"user_id": user_id, "token_hint": token_hint(token)},
            )

        # Encoded
        auth_value = self._codec.encode(user_id, expires_at, scheme, token)
        logged_in_value = self._codec.encode(user_id, expires_at, LOGGED_IN_SCHEME, token)

        auth_name = self._names.for_scheme(scheme)
        for name, value, event_scheme in (
            (auth_name, auth_value, scheme),
            (self._names.logged_in, logged_in_value, LOGGED_IN_SCHEME),
        ):
            event = CookieEvent(
                name=name,
                value=value,
                expire=expire,
                expiration=expiration,
                user_id=user_id,
                scheme=event_scheme,
                token=token,
            )
            for listener in self._hooks.on_set_cookie:
                listener(event)

        # Emitted
        emit_context = EmitContext(
            expire=expire,
            expiration=expiration,
            user_id=user_id,
            scheme=scheme,
            token=token,
        )
        if not self._hooks.should_emit(emit_context):
            logger.info("Cookie emission vetoed", extra={"user_id": user_id})
            return []

        directives = [
            CookieDirective(
                name=auth_name,
                value=auth_value,
                path=path,
                domain=attrs.domain,
                expire=expire,
                secure=attrs.secure,
            )
            for path in attrs.auth_paths
        ]
        directives += [
            CookieDirective(
                name=self._names.logged_in,
                value=logged_in_value,
                path=path,
                domain=attrs.domain,
                expire=expire,
                secure=attrs.secure_logged_in,
            )
            for path in attrs.logged_in_paths
        ]

        logger.info(
            "Issued %d cookie directive(s)",
            len(directives),
            extra={"user_id": user_id, "scheme": scheme, "token_hint": token_hint(token)},
        )
        return directives

    # ── Validation ───────────────────────────────────────────────

    async def validate(self, value: str, scheme: str, *, grace: bool = False) -> Session:
        """
        Verify a cookie value and return the live session behind it.

        Raises ``SignatureError`` for bad values or revoked tokens and
        ``CookieExpired`` for stale ones.
        """
        now = self._now()
        payload = self._codec.decode(value, scheme, now=now, grace=grace)
        session = await self._store.lookup(payload.token, include_expired=True)
        if session is None or session.user_id != payload.user_id:
            raise SignatureError("cookie does not belong to a live session")

        # Same window the codec applied, measured against the stored binding
        limit = session.live_until
        if grace:
            limit = max(limit, session.expires_at + self._grace_period)
        if now > limit:
            raise CookieExpired(f"session expired at {session.expires_at.isoformat()}")
        return session

    # ── Clearing ─────────────────────────────────────────────────

    async def clear(
        self, token: str | None = None, *, request_is_https: bool | None = None
    ) -> list[CookieDirective]:
        """Revoke *token* (if given) and return directives that expire every cookie."""
        if token:
            await self._store.revoke(token)
            logger.info("Session token revoked", extra={"token_hint": token_hint(token)})

        if not self._hooks.should_emit(
            EmitContext(expire=0, expiration=0, user_id="", scheme="", token="")
        ):
            logger.info("Cookie clearing vetoed")
            return []

        context = self._context_for(request_is_https)
        attrs = self._policy.finalize(True, True, context)
        expire = int((self._now() - CLEAR_BACKDATE).timestamp())

        placements = [
            (name, path)
            for name in (self._names.auth, self._names.secure_auth)
            for path in attrs.auth_paths
        ]
        placements += [(self._names.logged_in, path) for path in attrs.logged_in_paths]

        return [
            CookieDirective(
                name=name,
                value="",
                path=path,
                domain=attrs.domain,
                expire=expire,
                secure=True,
            )
            for name, path in placements
        ]
