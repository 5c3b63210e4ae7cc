"""Request authentication and permission guards.

Authentication runs as a FastAPI dependency so it can await the session
ledger. For every protected request it:

1. takes the token from the auth cookie, falling back to
   ``Authorization: Bearer <token>``;
2. rejects anything that is not three dot-separated segments before doing
   any cryptography;
3. verifies the token (signature, algorithm, issuer, validity window);
4. re-checks username and issuer on the decoded claims;
5. confirms the JTI is live in the session ledger;
6. stores the resulting Identity on ``request.state.identity``.

Permission and role guards are separate dependencies that only read
``request.state.identity``; without it they reject with 403.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from fastapi import Request

from vpsctl.core.errors import APIError, ErrorCatalog
from vpsctl.services.cookie import CookieService
from vpsctl.services.session_store import (
    SessionNotFoundError,
    SessionRevokedError,
    SessionStorageError,
    TokenStore,
)
from vpsctl.services.token import Claims, TokenError, TokenService

logger = logging.getLogger(__name__)

BEARER_SCHEME = "Bearer"


class TokenSource(str, Enum):
    COOKIE = "cookie"
    HEADER = "header"


@dataclass
class Identity:
    """Authenticated caller, attached to the request after verification."""

    user_id: int
    username: str
    jti: str
    roles: list[str]
    permissions: list[str]
    claims: Claims
    source: TokenSource

    def has_permission(self, permission: str) -> bool:
        return self.claims.has_permission(permission)

    def has_any_permission(self, *permissions: str) -> bool:
        return self.claims.has_any_permission(*permissions)

    def has_role(self, role: str) -> bool:
        return self.claims.has_role(role)


class SessionAuthenticator:
    """Turns a request's credentials into an Identity or an APIError."""

    def __init__(
        self,
        token_service: TokenService,
        session_store: TokenStore,
        cookies: CookieService,
        errors: ErrorCatalog,
    ):
        self.token_service = token_service
        self.session_store = session_store
        self.cookies = cookies
        self.errors = errors

    def extract_token(self, request: Request) -> tuple[str, TokenSource]:
        """Find the candidate token; the cookie wins whenever it is non-empty."""
        token = self.cookies.get_auth_cookie(request)
        if token:
            return token, TokenSource.COOKIE

        auth_header = request.headers.get("Authorization")
        if not auth_header:
            raise APIError(self.errors.AUTHENTICATION_REQUIRED)

        parts = auth_header.split(" ", 1)
        if len(parts) != 2 or parts[0] != BEARER_SCHEME or not parts[1].strip():
            raise APIError(self.errors.INVALID_REQUEST)
        return parts[1].strip(), TokenSource.HEADER

    async def authenticate(self, request: Request) -> Identity:
        token, source = self.extract_token(request)
        path = request.url.path

        if token.count(".") != 2:
            logger.warning(f"Structurally invalid token from {source.value}: {request.method} {path}")
            raise APIError(self.errors.INVALID_REQUEST)

        try:
            claims = self.token_service.validate(token)
        except TokenError as e:
            logger.warning(f"Token rejected for {request.method} {path}: {e}")
            raise APIError(self.errors.TOKEN_EXPIRED) from e

        if not claims.username or claims.issuer != self.token_service.issuer:
            logger.warning(f"Token claims failed integrity check for {request.method} {path}")
            raise APIError(self.errors.INVALID_CREDENTIALS)

        try:
            await self.session_store.validate(claims.jti)
        except (SessionNotFoundError, SessionRevokedError) as e:
            logger.warning(
                f"Session not active for {claims.username}: {e}",
                extra={"username": claims.username, "jti": claims.jti},
            )
            raise APIError(self.errors.TOKEN_EXPIRED) from e
        except SessionStorageError as e:
            raise APIError(self.errors.DATABASE_ERROR) from e

        return Identity(
            user_id=claims.user_id,
            username=claims.username,
            jti=claims.jti,
            roles=claims.roles,
            permissions=claims.permissions,
            claims=claims,
            source=source,
        )


def _errors(request: Request) -> ErrorCatalog:
    return request.app.state.errors


def get_identity(request: Request) -> Identity | None:
    """Identity attached by require_session, if any."""
    identity = getattr(request.state, "identity", None)
    return identity if isinstance(identity, Identity) else None


async def require_session(request: Request) -> Identity:
    """Dependency: authenticate the request and attach its Identity."""
    authenticator: SessionAuthenticator = request.app.state.authenticator
    identity = await authenticator.authenticate(request)
    request.state.identity = identity
    return identity


def _guard(
    predicate: Callable[[Identity], bool],
    description: str,
) -> Callable[[Request], Awaitable[Identity]]:
    async def dependency(request: Request) -> Identity:
        identity = get_identity(request)
        if identity is None:
            raise APIError(_errors(request).PERMISSION_DENIED)
        if not predicate(identity):
            logger.warning(
                f"Access denied for {identity.username}: missing {description} "
                f"on {request.method} {request.url.path}"
            )
            raise APIError(_errors(request).ACTION_NOT_ALLOWED)
        return identity

    return dependency


def require_permission(permission: str) -> Callable[[Request], Awaitable[Identity]]:
    """Dependency factory: caller must hold exactly this permission."""
    return _guard(lambda identity: identity.has_permission(permission), f"permission {permission}")


def require_any_permission(*permissions: str) -> Callable[[Request], Awaitable[Identity]]:
    """Dependency factory: caller must hold at least one of the permissions."""
    return _guard(
        lambda identity: identity.has_any_permission(*permissions),
        f"any of {', '.join(permissions)}",
    )


def require_role(role: str) -> Callable[[Request], Awaitable[Identity]]:
    """Dependency factory: caller must hold exactly this role."""
    return _guard(lambda identity: identity.has_role(role), f"role {role}")
