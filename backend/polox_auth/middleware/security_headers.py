"""Security headers added to every auth API response."""

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

# Responses carry tokens and identities; none of them may be cached or framed
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}

HSTS_VALUE = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add ``SECURITY_HEADERS`` and, over HTTPS, Strict-Transport-Security.

    ``X-Forwarded-Proto`` is only believed from ``trusted_proxies`` so a
    direct client cannot toggle HSTS.
    """

    def __init__(self, app: ASGIApp, trusted_proxies: list[str] | None = None):
        super().__init__(app)
        self.trusted_proxies = frozenset(trusted_proxies or ())

    def _is_https(self, request: Request) -> bool:
        if request.url.scheme == "https":
            return True
        peer = request.client.host if request.client else None
        if peer is None or peer not in self.trusted_proxies:
            return False
        return request.headers.get("x-forwarded-proto", "").lower() == "https"

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if self._is_https(request):
            response.headers["Strict-Transport-Security"] = HSTS_VALUE

        return response
