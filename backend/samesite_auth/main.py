"""
SameSite auth cookies – FastAPI entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from samesite_auth.core.config import settings
from samesite_auth.core.errors import (
    AttributeConflict,
    CookieExpired,
    InvalidRequest,
    SessionCookieError,
    SignatureError,
    StorageUnavailable,
)
from samesite_auth.core.logging import get_logger, setup_logging
from samesite_auth.core.middleware import RequestIdMiddleware
from samesite_auth.security.deps import get_issuer
from samesite_auth.api.auth import router as auth_router
from samesite_auth.api.version import router as version_router

logger = get_logger(__name__)

# Most specific first; SessionCookieError is the catch-all
_ERROR_STATUS: list[tuple[type[SessionCookieError], int]] = [
    (InvalidRequest, 422),
    (SignatureError, 401),
    (CookieExpired, 401),
    (StorageUnavailable, 503),
    (AttributeConflict, 500),
]


async def session_cookie_error_handler(
    request: Request, exc: SessionCookieError
) -> JSONResponse:
    code = next(
        (c for kind, c in _ERROR_STATUS if isinstance(exc, kind)),
        500,
    )
    if code >= 500:
        logger.error(
            "%s on %s: %s",
            type(exc).__name__,
            request.url.path,
            exc,
            extra={"request_id": getattr(request.state, "request_id", None)},
        )
    return JSONResponse(
        status_code=code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Prepare the token backend (e.g. create the Postgres table) before serving."""
    issuer = application.dependency_overrides.get(get_issuer, get_issuer)()
    await issuer.store.prepare()
    logger.info("Token store ready (%s)", type(issuer.store).__name__)
    yield


def create_app() -> FastAPI:
    """Application factory."""

    setup_logging()

    application = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Middleware ────────────────────────────────────────────────
    application.add_middleware(RequestIdMiddleware)

    # Credentials must be allowed for cookies to flow to an embedding origin
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )

    application.add_exception_handler(SessionCookieError, session_cookie_error_handler)

    # ── Routers ──────────────────────────────────────────────────
    application.include_router(version_router, prefix="/api")
    application.include_router(auth_router, prefix="/api")

    return application


app = create_app()
