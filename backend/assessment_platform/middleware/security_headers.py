"""
Security headers.

Every response gets the baseline set. API routes also carry bearer tokens
and tenant data, so they are marked uncacheable and may not be framed or
load anything. HSTS is only sent in production, where the app is served
over TLS.
"""

from typing import Mapping

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from assessment_platform.config import settings

BASELINE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}

API_HEADERS = {
    "Cache-Control": "no-store",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}

HSTS = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, api_prefix: str | None = None, hsts: bool | None = None,
                 extra: Mapping[str, str] | None = None):
        super().__init__(app)
        self.api_prefix = api_prefix or settings.api_prefix
        self.hsts = settings.environment == "production" if hsts is None else hsts
        self.extra = dict(extra or {})

    def headers_for(self, path: str) -> dict[str, str]:
        headers = dict(BASELINE_HEADERS)
        if path.startswith(self.api_prefix):
            headers.update(API_HEADERS)
        if self.hsts:
            headers["Strict-Transport-Security"] = HSTS
        headers.update(self.extra)
        return headers

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        # Headers set by the route win
        for header, value in self.headers_for(request.url.path).items():
            response.headers.setdefault(header, value)
        return response
