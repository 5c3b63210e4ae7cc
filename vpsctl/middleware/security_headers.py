"""Browser hardening headers for the panel and its API."""

from collections.abc import Collection

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

CONTENT_SECURITY_POLICY = "; ".join(
    [
        "default-src 'self'",
        "script-src 'self'",
        "style-src 'self' 'unsafe-inline'",
        "img-src 'self' data:",
        "connect-src 'self'",
        "font-src 'self'",
        "frame-ancestors 'none'",
        "form-action 'self'",
        "base-uri 'self'",
        "object-src 'none'",
    ]
)

HSTS_VALUE = "max-age=31536000; includeSubDomains"

STATIC_HEADERS = {
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Cache-Control": "no-store",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds the static header set, plus HSTS when the request arrived over TLS.

    A TLS-terminating proxy's ``X-Forwarded-Proto`` is believed only when the
    direct peer is one of ``trusted_proxies``.
    """

    def __init__(self, app: ASGIApp, trusted_proxies: Collection[str] = ()):
        super().__init__(app)
        self.trusted_proxies = frozenset(trusted_proxies)

    def _is_https(self, request: Request) -> bool:
        if request.url.scheme == "https":
            return True
        peer = request.client.host if request.client else None
        return (
            peer in self.trusted_proxies
            and request.headers.get("x-forwarded-proto", "").lower() == "https"
        )

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)

        response.headers.update(STATIC_HEADERS)
        if self._is_https(request):
            response.headers["Strict-Transport-Security"] = HSTS_VALUE

        return response
