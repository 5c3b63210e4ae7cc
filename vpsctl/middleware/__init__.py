"""Middleware module for VPS Control backend."""

from vpsctl.middleware.auth_rate_limit import LoginThrottle, LoginThrottleMiddleware
from vpsctl.middleware.authorization import (
    Identity,
    SessionAuthenticator,
    require_any_permission,
    require_permission,
    require_role,
    require_session,
)
from vpsctl.middleware.rate_limit import RateLimiter, RateLimitMiddleware
from vpsctl.middleware.rate_limit_cleanup import (
    API_THROTTLE_SWEEP_INTERVAL,
    LOGIN_THROTTLE_SWEEP_INTERVAL,
    throttle_cleanup_loop,
)
from vpsctl.middleware.sanitizer import InputSanitizerMiddleware
from vpsctl.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "API_THROTTLE_SWEEP_INTERVAL",
    "Identity",
    "InputSanitizerMiddleware",
    "LOGIN_THROTTLE_SWEEP_INTERVAL",
    "LoginThrottle",
    "LoginThrottleMiddleware",
    "RateLimiter",
    "RateLimitMiddleware",
    "SecurityHeadersMiddleware",
    "SessionAuthenticator",
    "require_any_permission",
    "require_permission",
    "require_role",
    "require_session",
    "throttle_cleanup_loop",
]
