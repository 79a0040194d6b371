"""
HTTP middleware: per-IP rate limiting and security response headers.
"""
import logging
import threading
import time
from typing import Dict, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

import config
from errors import error_response

logger = logging.getLogger(__name__)

RATE_LIMIT_SKIP = {"/health", "/api/auth/login", "/api/auth/register"}


class FixedWindowLimiter:
    """In-memory fixed-window counter keyed by client address.

    Expired windows are swept at most once per window length so the map
    only holds clients seen in the current window.
    """

    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._hits: Dict[str, Tuple[float, int]] = {}
        self._last_sweep: Optional[float] = None
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._hits)

    def _sweep(self, now: float):
        if self._last_sweep is not None and now - self._last_sweep < self.window_seconds:
            return
        expired = [k for k, (start, _) in self._hits.items() if now - start >= self.window_seconds]
        for key in expired:
            del self._hits[key]
        self._last_sweep = now

    def hit(self, key: str, now: float = None) -> Tuple[bool, int, float]:
        """Count one request. Returns (allowed, remaining, reset_at)."""
        now = time.time() if now is None else now
        with self._lock:
            self._sweep(now)
            start, count = self._hits.get(key, (now, 0))
            if now - start >= self.window_seconds:
                start, count = now, 0
            count += 1
            self._hits[key] = (start, count)
        reset_at = start + self.window_seconds
        return count <= self.max_requests, max(self.max_requests - count, 0), reset_at

    def peek(self, key: str, now: float = None) -> Tuple[int, float]:
        now = time.time() if now is None else now
        with self._lock:
            start, count = self._hits.get(key, (now, 0))
        if now - start >= self.window_seconds:
            return self.max_requests, now + self.window_seconds
        return max(self.max_requests - count, 0), start + self.window_seconds

    def reset(self):
        with self._lock:
            self._hits.clear()
            self._last_sweep = None


limiter = FixedWindowLimiter(config.RATE_LIMIT_MAX, config.RATE_LIMIT_WINDOW_SECONDS)


def client_ip(request: Request, trusted_hops: int = None) -> str:
    """Client address as seen by the outermost trusted proxy.

    Each trusted proxy appends the peer it saw to X-Forwarded-For, so only
    the last ``trusted_hops`` entries are reliable. Anything further left is
    whatever the client sent.
    """
    hops = config.TRUSTED_PROXY_HOPS if trusted_hops is None else trusted_hops
    forwarded = request.headers.get("x-forwarded-for")
    if hops > 0 and forwarded:
        entries = [e.strip() for e in forwarded.split(",") if e.strip()]
        if entries:
            return entries[-min(hops, len(entries))]
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limiter: FixedWindowLimiter = limiter, enabled: bool = True, trusted_hops: int = None):
        super().__init__(app)
        self.limiter = limiter
        self.enabled = enabled
        self.trusted_hops = trusted_hops

    async def dispatch(self, request: Request, call_next):
        if not self.enabled or request.url.path in RATE_LIMIT_SKIP or request.method == "OPTIONS":
            return await call_next(request)

        ip = client_ip(request, self.trusted_hops)
        allowed, remaining, reset_at = self.limiter.hit(ip)
        headers = {
            "X-RateLimit-Limit": str(self.limiter.max_requests),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": str(int(reset_at)),
        }
        if not allowed:
            retry_after = max(int(reset_at - time.time()), 1)
            logger.warning("Rate limit exceeded for %s on %s", ip, request.url.path)
            headers["Retry-After"] = str(retry_after)
            return error_response(
                429,
                "Too many requests from this IP, please try again later.",
                retryAfter=retry_after,
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response


SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self'; style-src 'self' 'unsafe-inline'; "
        "script-src 'self'; img-src 'self' data: https:"
    ),
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "cross-origin",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response
