"""
Custom middleware – request-id propagation.
"""

from __future__ import annotations

import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from samesite_auth.core.logging import get_logger

logger = get_logger(__name__)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Assigns a unique ``X-Request-Id`` to every request.

    * If the client sends one, it is reused.
    * The id is echoed in the response headers and attached to the access
      log line together with the transport scheme, which decides whether
      cookies can be issued at all.  Cookie headers are never logged.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = request_id

        response: Response = await call_next(request)
        cookies_set = len(response.headers.getlist("set-cookie"))

        logger.info(
            "%s %s %s -> %d",
            request.url.scheme,
            request.method,
            request.url.path,
            response.status_code,
            extra={"request_id": request_id, "cookies_set": cookies_set},
        )
        response.headers["X-Request-Id"] = request_id
        return response
