from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.responses import Response

from quietstats.core.errors import OriginNotAllowedError, QuietstatsError, RateLimitError
from quietstats.web.errors import error_response
from quietstats.web.security.rate_limit import FixedWindowRateLimiter, RateDecision
from quietstats.web.security.request_guard import declared_length, enforce_body_limits, json_depth, parse_json_body


CSP = "; ".join(
    [
        "default-src 'none'",
        "script-src 'self'",
        "connect-src 'self'",
        "img-src 'self'",
        "style-src 'self'",
        "base-uri 'self'",
        "form-action 'self'",
        "frame-ancestors 'none'",
    ]
)

SECURITY_HEADERS: Dict[str, str] = {
    "Content-Security-Policy": CSP,
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
}

CORS_ALLOW_METHODS = "GET, POST, PATCH, DELETE, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type, X-Site-ID"

BODY_METHODS = {"POST", "PUT", "PATCH"}


def client_ip(request: Request, *, peer_fallback: bool = True) -> Optional[str]:
    """First X-Forwarded-For hop, then X-Real-IP, then (optionally) the socket peer."""
    fwd = request.headers.get("x-forwarded-for", "")
    if fwd.strip():
        return fwd.split(",")[0].strip()
    real = request.headers.get("x-real-ip", "")
    if real.strip():
        return real.strip()
    if not peer_fallback:
        return None
    return getattr(getattr(request, "client", None), "host", None)


class WebSecurityMiddleware:
    """
    Security middleware chain (order matters):
    1) trace_id
    2) origin allow-list (CORS headers for allowed origins)
    3) fixed-window per-IP rate limit
    4) payload size + JSON guard for bodies
    Security headers are set on every response, rejections included.
    """

    def __init__(self, *, web_cfg: Dict[str, Any], rate_limiter: FixedWindowRateLimiter, max_request_bytes: Optional[int] = None, reporter=None, logger=None):
        self.web_cfg = web_cfg
        self.allowed_origins: List[str] = [str(o) for o in (web_cfg.get("allowed_origins") or [])]
        self.rate = rate_limiter
        self.max_request_bytes = int(max_request_bytes or web_cfg.get("max_request_bytes", 100 * 1024))
        self.reporter = reporter
        self.logger = logger

    async def __call__(self, request: Request, call_next):  # noqa: ANN001
        trace_id = uuid.uuid4().hex
        request.state.trace_id = trace_id
        extra: Dict[str, str] = {}
        try:
            extra.update(self._check_origin(request))
            if request.method == "OPTIONS":
                return self._finish(Response(status_code=204), extra)
            extra.update(self._rate_headers(self._check_rate(request)))
            if request.method in BODY_METHODS:
                await self._check_body(request)
        except QuietstatsError as e:
            self._report(e, request)
            return self._finish(error_response(e), extra)

        resp = await call_next(request)
        return self._finish(resp, extra)

    # ---- checks ----
    def _check_origin(self, request: Request) -> Dict[str, str]:
        origin = request.headers.get("origin")
        if not origin:
            return {}
        if origin not in self.allowed_origins:
            raise OriginNotAllowedError("Origin not allowed", origin=origin)
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
            "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
            "Access-Control-Max-Age": "86400",
            "Vary": "Origin",
        }

    def _check_rate(self, request: Request) -> RateDecision:
        decision = self.rate.hit(client_ip(request) or "unknown")
        if not decision.allowed:
            raise RateLimitError("Rate limit exceeded", reset_ms=decision.reset_ms)
        return decision

    @staticmethod
    def _rate_headers(decision: RateDecision) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": str(decision.remaining),
            "X-RateLimit-Reset": str(decision.reset_ms),
        }

    async def _check_body(self, request: Request) -> None:
        enforce_body_limits(None, max_bytes=self.max_request_bytes, declared=declared_length(request.headers))
        body = await request.body()
        enforce_body_limits(body, max_bytes=self.max_request_bytes)
        if "application/json" in request.headers.get("content-type", ""):
            obj = parse_json_body(body)
            if obj is not None:
                json_depth(obj, max_depth=10)

    # ---- helpers ----
    @staticmethod
    def _finish(resp: Response, extra: Dict[str, str]) -> Response:
        for k, v in SECURITY_HEADERS.items():
            resp.headers[k] = v
        for k, v in extra.items():
            resp.headers[k] = v
        return resp

    def _report(self, err: QuietstatsError, request: Request) -> None:
        if self.logger:
            self.logger.warning(f"Request rejected ({err.code}) {request.method} {request.url.path}")
        if self.reporter is not None:
            self.reporter.write_error(err, trace_id=request.state.trace_id, subsystem="web")
