"""
Cookie attribute policy and cookie-set directives.

Every cookie emitted here carries ``SameSite=None`` so the session keeps
working when the site is embedded in a cross-origin iframe.  Browsers drop
``SameSite=None`` cookies that are not also ``Secure``, so the policy
refuses to produce one instead of silently downgrading either flag.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from starlette.responses import Response

from samesite_auth.core.errors import AttributeConflict

SAME_SITE = "None"


@dataclass(frozen=True)
class CookieContext:
    """Host environment facts the policy needs for one request."""

    home_url_scheme: str
    admin_path: str
    plugins_path: str
    cookie_path: str
    site_cookie_path: str
    domain: str | None = None
    request_is_https: bool = False


@dataclass(frozen=True)
class AttributeSet:
    """Resolved attributes for the auth cookie and the logged-in cookie."""

    secure: bool
    secure_logged_in: bool
    auth_paths: tuple[str, ...]
    logged_in_paths: tuple[str, ...]
    domain: str | None
    same_site: str = SAME_SITE
    http_only: bool = True


@dataclass(frozen=True)
class CookieDirective:
    """One instruction to set (or clear) a cookie."""

    name: str
    value: str
    path: str
    domain: str | None
    expire: int  # UNIX seconds, 0 = session cookie
    secure: bool
    http_only: bool = True
    same_site: str = SAME_SITE

    def __post_init__(self) -> None:
        _check_transport(self.secure, self.same_site, self.name)
        if not self.http_only:
            raise AttributeConflict(f"cookie {self.name!r} must be HttpOnly")


def _check_transport(secure: bool, same_site: str, what: str) -> None:
    if not secure and same_site.lower() == "none":
        raise AttributeConflict(
            f"{what}: SameSite=None requires Secure; refusing to emit"
        )


class CookieAttributePolicy:
    """Computes Secure / SameSite / path placement from the transport context."""

    @staticmethod
    def paths_for(context: CookieContext) -> tuple[tuple[str, ...], tuple[str, ...]]:
        """(auth cookie paths, logged-in cookie paths) for *context*."""
        logged_in_paths: tuple[str, ...] = (context.cookie_path,)
        if context.site_cookie_path != context.cookie_path:
            logged_in_paths += (context.site_cookie_path,)
        return (context.admin_path, context.plugins_path), logged_in_paths

    def attributes_for(
        self, base_secure: bool | None, context: CookieContext
    ) -> AttributeSet:
        secure = context.request_is_https if base_secure is None else bool(base_secure)
        secure_logged_in = secure and context.home_url_scheme.lower() == "https"
        return self.finalize(secure, secure_logged_in, context)

    def finalize(
        self, secure: bool, secure_logged_in: bool, context: CookieContext
    ) -> AttributeSet:
        """Validate the (possibly filtered) secure flags and fix the paths."""
        _check_transport(secure, SAME_SITE, "auth cookie")
        _check_transport(secure_logged_in, SAME_SITE, "logged-in cookie")

        auth_paths, logged_in_paths = self.paths_for(context)
        return AttributeSet(
            secure=secure,
            secure_logged_in=secure_logged_in,
            auth_paths=auth_paths,
            logged_in_paths=logged_in_paths,
            domain=context.domain,
        )


# ── HTTP response adapter ───────────────────────────────────────


def apply_directives(response: Response, directives: Iterable[CookieDirective]) -> None:
    """Write one ``Set-Cookie`` header per directive, preserving order."""
    for d in directives:
        expires = datetime.fromtimestamp(d.expire, timezone.utc) if d.expire else None
        response.set_cookie(
            key=d.name,
            value=d.value,
            expires=expires,
            path=d.path,
            domain=d.domain,
            secure=d.secure,
            httponly=d.http_only,
            samesite=d.same_site.lower(),
        )
