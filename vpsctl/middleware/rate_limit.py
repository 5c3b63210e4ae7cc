"""Fixed-window API rate limiting per source address."""

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from vpsctl.core.errors import ErrorCatalog, error_response
from vpsctl.core.request_utils import get_client_ip

logger = logging.getLogger(__name__)


@dataclass
class RateLimitEntry:
    """Request count for one address in its current window."""

    count: int
    reset_at: float


class RateLimiter:
    """In-memory fixed-window limiter: ``limit`` requests per ``window``.

    The first request after ``reset_at`` opens a new window with count 1.
    Within a window, requests beyond ``limit`` are rejected with the seconds
    left until the window resets.
    """

    def __init__(
        self,
        limit: int,
        window: timedelta,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self.window_seconds = window.total_seconds()
        self._clock = clock
        self._requests: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def check_rate_limit(self, address: str) -> tuple[bool, int]:
        """Count a request and decide whether it is allowed.

        Returns:
            Tuple of (is_allowed, retry_after_seconds)
        """
        with self._lock:
            now = self._clock()
            entry = self._requests.get(address)

            if entry is None or now > entry.reset_at:
                self._requests[address] = RateLimitEntry(
                    count=1, reset_at=now + self.window_seconds
                )
                return True, 0

            if entry.count >= self.limit:
                return False, max(1, math.ceil(entry.reset_at - now))

            entry.count += 1
            return True, 0

    def remaining(self, address: str) -> int:
        """Requests left for an address in its current window."""
        with self._lock:
            entry = self._requests.get(address)
            if entry is None or self._clock() > entry.reset_at:
                return self.limit
            return max(0, self.limit - entry.count)

    def reset(self, address: str | None = None) -> None:
        """Reset counters for one address, or all of them."""
        with self._lock:
            if address:
                self._requests.pop(address, None)
            else:
                self._requests.clear()

    def cleanup_expired(self) -> int:
        """Evict entries whose window has passed. Returns count removed."""
        with self._lock:
            now = self._clock()
            expired = [addr for addr, entry in self._requests.items() if now > entry.reset_at]
            for addr in expired:
                del self._requests[addr]
        return len(expired)

    def tracked_addresses(self) -> int:
        with self._lock:
            return len(self._requests)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Applies a RateLimiter to every request under the protected prefixes."""

    def __init__(
        self,
        app: ASGIApp,
        limiter: RateLimiter,
        errors: ErrorCatalog,
        protected_prefixes: list[str] | None = None,
        trusted_proxies: set[str] | None = None,
        enabled: bool = True,
    ) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.errors = errors
        self.protected_prefixes = [p.rstrip("/") for p in (protected_prefixes or ["/api/vps"])]
        self.trusted_proxies = trusted_proxies or set()
        self.enabled = enabled

    def _is_protected(self, path: str) -> bool:
        return any(path == p or path.startswith(p + "/") for p in self.protected_prefixes)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Process request with rate limiting."""
        if not self.enabled or request.method == "OPTIONS":
            return await call_next(request)

        path = request.url.path
        if not self._is_protected(path):
            return await call_next(request)

        client_ip = get_client_ip(request, self.trusted_proxies)
        is_allowed, retry_after = self.limiter.check_rate_limit(client_ip)

        if not is_allowed:
            logger.warning(
                f"Rate limit exceeded for {client_ip} on {path}",
                extra={"client_ip": client_ip, "path": path},
            )
            return error_response(
                self.errors.RATE_LIMIT_EXCEEDED,
                meta={"retry_after": retry_after},
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(self.limiter.limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(retry_after),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.limiter.limit)
        response.headers["X-RateLimit-Remaining"] = str(self.limiter.remaining(client_ip))
        return response
