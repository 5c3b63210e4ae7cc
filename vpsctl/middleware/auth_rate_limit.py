"""Login throttling: temporary per-address block after repeated auth failures."""

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

from fastapi import Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from vpsctl.core.errors import ErrorCatalog, error_response
from vpsctl.core.request_utils import get_client_ip

logger = logging.getLogger(__name__)

# Responses that count as a failed authentication attempt
FAILURE_STATUSES = {status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN}


@dataclass
class LoginAttempt:
    """Failure tracking for a single source address."""

    failures: int
    # Time of the first failure, re-armed to the threshold-crossing failure
    blocked_at: float


class LoginThrottle:
    """Per-address failure counter with a temporary block.

    Once ``max_attempts`` failures accumulate, the address is blocked for
    ``block_time`` measured from the failure that crossed the threshold.
    Failures reported while the block is active do not extend it. After the
    block lapses, the next failure starts a fresh count.

    All state is guarded by one lock so request handlers and the periodic
    sweep can run from any thread or task.
    """

    def __init__(
        self,
        max_attempts: int,
        block_time: timedelta,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.block_seconds = block_time.total_seconds()
        self._clock = clock
        self._attempts: dict[str, LoginAttempt] = {}
        self._lock = threading.Lock()

    def _remaining(self, attempt: LoginAttempt, now: float) -> float:
        return self.block_seconds - (now - attempt.blocked_at)

    def is_blocked(self, address: str) -> tuple[bool, int]:
        """Return (blocked, retry_after_seconds) for an address."""
        with self._lock:
            attempt = self._attempts.get(address)
            if attempt is None or attempt.failures < self.max_attempts:
                return False, 0
            remaining = self._remaining(attempt, self._clock())
        if remaining > 0:
            return True, max(1, math.ceil(remaining))
        return False, 0

    def record_failure(self, address: str) -> None:
        """Count one failed attempt from an address."""
        with self._lock:
            now = self._clock()
            attempt = self._attempts.get(address)

            if attempt is None:
                attempt = LoginAttempt(failures=0, blocked_at=now)
                self._attempts[address] = attempt
            elif attempt.failures >= self.max_attempts:
                if self._remaining(attempt, now) > 0:
                    return
                # Block lapsed: start over
                attempt.failures = 0
                attempt.blocked_at = now

            attempt.failures += 1
            if attempt.failures == self.max_attempts:
                attempt.blocked_at = now
                logger.warning(
                    f"Address blocked due to too many login attempts: {address} "
                    f"(attempts={attempt.failures}, block={int(self.block_seconds)}s)"
                )

    def reset_failures(self, address: str) -> None:
        """Forget all failures for an address."""
        with self._lock:
            self._attempts.pop(address, None)

    def cleanup_expired(self) -> int:
        """Evict entries whose block window has fully elapsed. Returns count removed."""
        with self._lock:
            now = self._clock()
            expired = [
                address
                for address, attempt in self._attempts.items()
                if self._remaining(attempt, now) <= 0
            ]
            for address in expired:
                del self._attempts[address]
        return len(expired)

    def tracked_addresses(self) -> int:
        with self._lock:
            return len(self._attempts)


class LoginThrottleMiddleware(BaseHTTPMiddleware):
    """Rejects blocked addresses and feeds auth outcomes back into the throttle.

    Applies to every path under ``path_prefix``. A 401/403 response records a
    failure for the caller's address; a 200 clears it.
    """

    def __init__(
        self,
        app: ASGIApp,
        throttle: LoginThrottle,
        errors: ErrorCatalog,
        path_prefix: str = "/api/auth",
        trusted_proxies: set[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.throttle = throttle
        self.errors = errors
        self.path_prefix = path_prefix.rstrip("/")
        self.trusted_proxies = trusted_proxies or set()

    def _applies_to(self, path: str) -> bool:
        return path == self.path_prefix or path.startswith(self.path_prefix + "/")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method == "OPTIONS" or not self._applies_to(request.url.path):
            return await call_next(request)

        client_ip = get_client_ip(request, self.trusted_proxies)
        blocked, retry_after = self.throttle.is_blocked(client_ip)
        if blocked:
            logger.warning(
                f"Blocked address attempted auth request: {client_ip} {request.url.path}",
                extra={"client_ip": client_ip, "path": request.url.path},
            )
            return error_response(
                self.errors.RATE_LIMIT_EXCEEDED,
                meta={"retry_after": retry_after},
                headers={"Retry-After": str(retry_after)},
            )

        response = await call_next(request)

        if response.status_code in FAILURE_STATUSES:
            self.throttle.record_failure(client_ip)
        elif response.status_code == status.HTTP_200_OK:
            self.throttle.reset_failures(client_ip)

        return response
