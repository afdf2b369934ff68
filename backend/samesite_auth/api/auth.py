"""
Auth router – session introspection, renewal and logout.

Signing in is the host application's job: once it has verified the user
it calls ``SessionIssuer.issue`` and ``apply_directives``.  This module
only handles HTTP concerns (cookies, response shaping) around the issuer.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from samesite_auth.security.cookies import apply_directives
from samesite_auth.security.deps import (
    get_current_user,
    get_issuer,
    request_is_https,
    require_auth,
)
from samesite_auth.services.issuer import SessionIssuer
from samesite_auth.services.token_store import Session

router = APIRouter(prefix="/auth", tags=["auth"])


# ── Request / Response Schemas ───────────────────────────────────


class SessionOut(BaseModel):
    user_id: str
    expires_at: datetime
    grace_until: datetime | None = None


class MeResponse(BaseModel):
    session: SessionOut | None = None


class RenewRequest(BaseModel):
    remember: bool = False


class RenewResponse(BaseModel):
    cookies_set: int


class LogoutResponse(BaseModel):
    ok: bool = True


def _session_out(session: Session) -> SessionOut:
    return SessionOut(
        user_id=session.user_id,
        expires_at=session.expires_at,
        grace_until=session.grace_until,
    )


# ── Endpoints ────────────────────────────────────────────────────


@router.get("/me", response_model=MeResponse)
async def me(session: Session | None = Depends(get_current_user)):
    """Return the current session, or null."""
    if session is None:
        return MeResponse(session=None)
    return MeResponse(session=_session_out(session))


@router.post("/renew", response_model=RenewResponse)
async def renew(
    body: RenewRequest,
    request: Request,
    response: Response,
    session: Session = Depends(require_auth),
    issuer: SessionIssuer = Depends(get_issuer),
):
    """Re-issue the cookies for the current session token with a fresh expiration."""
    directives = await issuer.issue(
        session.user_id,
        remember=body.remember,
        token=session.token,
        request_is_https=request_is_https(request),
    )
    apply_directives(response, directives)
    return RenewResponse(cookies_set=len(directives))


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    request: Request,
    response: Response,
    session: Session | None = Depends(get_current_user),
    issuer: SessionIssuer = Depends(get_issuer),
):
    """Revoke the server-side token and expire every auth cookie."""
    directives = await issuer.clear(
        session.token if session else None,
        request_is_https=request_is_https(request),
    )
    apply_directives(response, directives)
    return LogoutResponse()
