"""Authentication API endpoints."""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vpsctl.api.deps import get_cookie_service, get_errors, get_session_store, get_token_service
from vpsctl.core import get_db
from vpsctl.core.errors import APIError, ErrorCatalog
from vpsctl.core.permissions import PERM_USER_EDIT, PERM_USER_VIEW
from vpsctl.middleware.authorization import Identity, require_permission, require_session
from vpsctl.schemas.auth import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RevokeSessionRequest,
    SessionListResponse,
    SessionResponse,
    VerifyResponse,
)
from vpsctl.services.cookie import CookieService
from vpsctl.services.credentials import AuthError, AuthManager, CredentialService
from vpsctl.services.session_store import (
    SessionAlreadyRevokedError,
    SessionNotFoundError,
    SessionStoreError,
    TokenStore,
)
from vpsctl.services.token import TokenData, TokenError, TokenService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def get_auth_manager(db: AsyncSession = Depends(get_db)) -> AuthManager:
    """Dependency to get the login flow over the credential store."""
    return AuthManager(CredentialService(db))


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    response: Response,
    auth_manager: AuthManager = Depends(get_auth_manager),
    token_service: TokenService = Depends(get_token_service),
    session_store: TokenStore = Depends(get_session_store),
    cookie_service: CookieService = Depends(get_cookie_service),
    errors: ErrorCatalog = Depends(get_errors),
) -> LoginResponse:
    """Authenticate and start a session.

    A successful login revokes every earlier session of the same user. The
    token is only delivered (as a cookie) once it is recorded in the ledger.
    """
    try:
        result = await auth_manager.login(body.username, body.password)
    except AuthError as e:
        logger.warning(f"Login failed for {body.username}: {e}")
        raise APIError(errors.INVALID_CREDENTIALS) from e
    except (SQLAlchemyError, OSError) as e:
        raise APIError(errors.DATABASE_ERROR) from e

    user = result.user
    jti = session_store.new_session_id(user.username)
    issued_at = datetime.now(UTC)
    expires_at = int((issued_at + token_service.ttl).timestamp())

    try:
        token = token_service.issue(
            TokenData(
                user_id=user.id,
                username=user.username,
                jti=jti,
                roles=result.roles,
                permissions=result.permissions,
            ),
            now=issued_at,
        )
    except TokenError as e:
        raise APIError(errors.INTERNAL_ERROR) from e

    try:
        revoked = await session_store.save_exclusive(jti, user.username, expires_at)
    except SessionStoreError as e:
        raise APIError(errors.INTERNAL_ERROR) from e

    cookie_service.set_auth_cookie(response, token)
    logger.info(
        f"User logged in: {user.username} (roles={result.roles}, "
        f"prior sessions invalidated={revoked})"
    )
    return LoginResponse(message="Logged in successfully")


@router.post("/verify", response_model=VerifyResponse)
async def verify(identity: Identity = Depends(require_session)) -> VerifyResponse:
    """Confirm the caller's session is valid."""
    return VerifyResponse(username=identity.username)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    response: Response,
    identity: Identity = Depends(require_session),
    session_store: TokenStore = Depends(get_session_store),
    cookie_service: CookieService = Depends(get_cookie_service),
) -> MessageResponse:
    """Revoke the caller's own session and clear the cookie.

    A ledger failure here is logged; the cookie is cleared regardless.
    """
    try:
        await session_store.revoke(identity.jti, identity.user_id, identity.username)
    except SessionStoreError as e:
        logger.warning(f"Failed to revoke session on logout for {identity.username}: {e}")

    cookie_service.clear_auth_cookie(response)
    logger.info(f"User logged out: {identity.username}")
    return MessageResponse(message="Logged out successfully")


@router.get(
    "/sessions",
    response_model=SessionListResponse,
    dependencies=[Depends(require_session), Depends(require_permission(PERM_USER_VIEW))],
)
async def list_sessions(
    session_store: TokenStore = Depends(get_session_store),
    errors: ErrorCatalog = Depends(get_errors),
) -> SessionListResponse:
    """List every recorded session, active and revoked, newest first."""
    try:
        rows = await session_store.list_all()
    except SessionStoreError as e:
        raise APIError(errors.DATABASE_ERROR) from e

    sessions = [SessionResponse.model_validate(row) for row in rows]
    return SessionListResponse(sessions=sessions, total=len(sessions))


@router.post(
    "/sessions/revoke",
    response_model=MessageResponse,
    dependencies=[Depends(require_session)],
)
async def revoke_session(
    body: RevokeSessionRequest,
    identity: Identity = Depends(require_permission(PERM_USER_EDIT)),
    session_store: TokenStore = Depends(get_session_store),
    errors: ErrorCatalog = Depends(get_errors),
) -> MessageResponse:
    """Revoke a session by JTI, recording the caller as the revoker."""
    try:
        await session_store.revoke(body.jti, identity.user_id, identity.username)
    except SessionNotFoundError as e:
        raise APIError(errors.SESSION_NOT_FOUND) from e
    except SessionAlreadyRevokedError as e:
        raise APIError(errors.SESSION_ALREADY_REVOKED) from e
    except SessionStoreError as e:
        raise APIError(errors.DATABASE_ERROR) from e

    logger.info(
        f"Session revoked: jti={body.jti} by={identity.username}",
        extra={"username": identity.username, "jti": body.jti},
    )
    return MessageResponse(message="Session revoked successfully")
