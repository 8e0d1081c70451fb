"""
Security headers and request identity.

Authentication happens upstream; the gateway forwards the signed-in user's
id in the X-User-Id header.
"""
import re
import logging
from typing import Optional
from fastapi import Header, HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from datastory.core.errors import ErrorCodes, get_error_response

logger = logging.getLogger(__name__)

USER_ID_PATTERN = re.compile(r'^[A-Za-z0-9_.@:\-]{1,128}$')

DEFAULT_CSP = {
    "default-src": "'none'",
    "frame-ancestors": "'none'",
    "base-uri": "'none'",
}


def build_csp_header(csp_dict: dict) -> str:
    """Build CSP header string from dictionary."""
    return "; ".join(f"{key} {value}" for key, value in csp_dict.items())


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add CSP, anti-sniffing, framing and referrer headers to every response."""

    def __init__(self, app, csp_overrides: dict = None):
        super().__init__(app)
        csp = DEFAULT_CSP.copy()
        if csp_overrides:
            csp.update(csp_overrides)
        self.csp_header = build_csp_header(csp)

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["Content-Security-Policy"] = self.csp_header
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


async def get_current_user(
    request: Request,
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> str:
    """FastAPI dependency: the authenticated user's id, or 401."""
    user_id = (x_user_id or "").strip()
    if not user_id or not USER_ID_PATTERN.match(user_id):
        logger.info("Rejected request without a valid X-User-Id header")
        error_info = get_error_response(ErrorCodes.UNAUTHORIZED)
        error_info["correlation_id"] = getattr(request.state, "correlation_id", "unknown")
        raise HTTPException(status_code=401, detail=error_info)
    return user_id
