"""
FastAPI dependencies for cookie issuance and authentication.

- ``get_issuer``        – process-wide ``SessionIssuer`` built from settings.
- ``get_current_user``  – returns the live session or None (soft check).
- ``require_auth``      – raises 401 if not authenticated (hard check).
"""

from __future__ import annotations

import secrets
from datetime import timedelta

from fastapi import Depends, HTTPException, Request, status

from samesite_auth.core.config import settings
from samesite_auth.core.errors import CookieExpired, SignatureError
from samesite_auth.core.logging import get_logger
from samesite_auth.security.codec import LOGGED_IN_SCHEME, CookieCodec
from samesite_auth.services.issuer import CookieNames, SessionIssuer
from samesite_auth.services.token_store import (
    InMemoryTokenStore,
    PostgresTokenStore,
    Session,
    TokenStore,
)

logger = get_logger(__name__)

_issuer: SessionIssuer | None = None


def _build_store() -> TokenStore:
    if settings.TOKEN_STORE == "postgres":
        return PostgresTokenStore(settings.DATABASE_URL)
    if settings.TOKEN_STORE != "memory":
        raise ValueError(f"unknown TOKEN_STORE: {settings.TOKEN_STORE!r}")
    return InMemoryTokenStore()


def build_issuer() -> SessionIssuer:
    """Wire a ``SessionIssuer`` from the environment configuration."""
    secret = settings.AUTH_COOKIE_SECRET
    if not secret:
        logger.warning(
            "AUTH_COOKIE_SECRET is not set; using a per-process secret. "
            "All cookies become invalid on restart."
        )
        secret = secrets.token_urlsafe(48)

    grace = timedelta(hours=settings.GRACE_PERIOD_HOURS)
    return SessionIssuer(
        store=_build_store(),
        codec=CookieCodec(secret, grace_period=grace),
        context=settings.cookie_context(request_is_https=False),
        names=CookieNames(
            auth=settings.AUTH_COOKIE_NAME,
            secure_auth=settings.SECURE_AUTH_COOKIE_NAME,
            logged_in=settings.LOGGED_IN_COOKIE_NAME,
        ),
        remember_ttl=timedelta(days=settings.REMEMBER_TTL_DAYS),
        session_ttl=timedelta(days=settings.SESSION_TTL_DAYS),
        grace_period=grace,
    )


def get_issuer() -> SessionIssuer:
    """Return the process-wide issuer, creating it on first use."""
    global _issuer
    if _issuer is None:
        _issuer = build_issuer()
    return _issuer


def request_is_https(request: Request) -> bool:
    return request.url.scheme == "https"


async def get_current_user(
    request: Request,
    issuer: SessionIssuer = Depends(get_issuer),
) -> Session | None:
    """
    Read the logged-in cookie and return the session behind it.
    Returns ``None`` when unauthenticated (no cookie / expired / invalid).
    """
    value = request.cookies.get(issuer.names.logged_in)
    if not value:
        return None

    # POSTs may land just after expiry; honour the grace period for them
    grace = request.method == "POST"
    try:
        return await issuer.validate(value, LOGGED_IN_SCHEME, grace=grace)
    except (SignatureError, CookieExpired) as exc:
        logger.info("Rejected logged-in cookie: %s", exc)
        return None


async def require_auth(
    session: Session | None = Depends(get_current_user),
) -> Session:
    """
    Dependency that *requires* an authenticated user.
    Raises HTTP 401 if the user is not logged in.
    """
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return session
