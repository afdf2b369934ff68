"""
Version / info endpoint.

Also reports where cookies will be placed, so an embedding site can check
that its iframe origin will receive them.
"""

from fastapi import APIRouter, Depends, Request

from samesite_auth.core.config import settings
from samesite_auth.security.cookies import SAME_SITE, CookieAttributePolicy
from samesite_auth.security.deps import get_issuer, request_is_https
from samesite_auth.services.issuer import SessionIssuer

router = APIRouter(tags=["info"])


@router.get("/version")
async def version(
    request: Request,
    issuer: SessionIssuer = Depends(get_issuer),
) -> dict:
    """Return application metadata, the token backend and cookie placement."""
    context = settings.cookie_context(request_is_https=request_is_https(request))
    paths = CookieAttributePolicy.paths_for(context)
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.APP_ENV,
        "token_store": settings.TOKEN_STORE,
        "cookies": {
            "same_site": SAME_SITE,
            "home_url_scheme": context.home_url_scheme,
            # Logged-in cookie is only Secure when the home URL is https
            "cross_site_ready": context.home_url_scheme == "https",
            "domain": context.domain,
            "names": {
                "auth": issuer.names.auth,
                "secure_auth": issuer.names.secure_auth,
                "logged_in": issuer.names.logged_in,
            },
            "auth_paths": list(paths[0]),
            "logged_in_paths": list(paths[1]),
        },
    }
