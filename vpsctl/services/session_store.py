"""Session ledger: records issued tokens and their revocation state."""

import logging
import secrets
import time
from typing import Protocol

from sqlalchemy import desc, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vpsctl.models.session_token import SessionToken

logger = logging.getLogger(__name__)

# Actor recorded when a login revokes the user's earlier sessions
SYSTEM_ACTOR_ID = 0
SYSTEM_ACTOR_USERNAME = "SYSTEM"

_SESSION_ID_RANDOM_BYTES = 8


class SessionStoreError(Exception):
    """Base session ledger error."""

    pass


class SessionNotFoundError(SessionStoreError):
    """No ledger row exists for the JTI."""

    pass


class SessionRevokedError(SessionStoreError):
    """The session is revoked or past its expiry."""

    pass


class SessionAlreadyRevokedError(SessionStoreError):
    """The session exists but was already revoked."""

    pass


class SessionStorageError(SessionStoreError):
    """The ledger database failed."""

    pass


class TokenStore(Protocol):
    """Capabilities the authentication pipeline needs from the ledger."""

    def new_session_id(self, username: str) -> str: ...

    async def save(self, jti: str, username: str, expires_at: int) -> None: ...

    async def save_exclusive(self, jti: str, username: str, expires_at: int) -> int: ...

    async def validate(self, jti: str) -> None: ...

    async def revoke(self, jti: str, actor_id: int, actor_username: str) -> None: ...

    async def list_all(self) -> list[SessionToken]: ...


class SessionStore:
    """SQLite-backed ledger of issued session tokens.

    Every public coroutine opens its own short-lived session, so one store
    instance is safe to share across concurrent requests; SQLite serializes
    the writers.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    def new_session_id(self, username: str) -> str:
        """Generate a JTI: ``<username>_<unix seconds><16 hex chars>``.

        Uniqueness is best-effort; the ledger's unique constraint on ``jti``
        is the final arbiter.
        """
        suffix = secrets.token_hex(_SESSION_ID_RANDOM_BYTES)
        return f"{username}_{int(time.time())}{suffix}"

    async def save(self, jti: str, username: str, expires_at: int) -> None:
        """Insert a non-revoked session without touching other sessions."""
        try:
            async with self._session_maker() as db, db.begin():
                db.add(self._new_row(jti, username, expires_at))
        except SQLAlchemyError as e:
            logger.error(f"Failed to save session {jti} for {username}: {e}")
            raise SessionStorageError("Failed to save session") from e

    async def save_exclusive(self, jti: str, username: str, expires_at: int) -> int:
        """Atomically revoke all of the user's live sessions and insert a new one.

        Both statements run in one transaction; if either fails nothing is
        committed and the new token must not be handed out.

        Returns:
            Number of previously non-revoked sessions that were revoked.
        """
        try:
            async with self._session_maker() as db, db.begin():
                result = await db.execute(
                    update(SessionToken)
                    .where(SessionToken.username == username, SessionToken.revoked.is_(False))
                    .values(
                        revoked=True,
                        revoked_by_id=SYSTEM_ACTOR_ID,
                        revoked_by_username=SYSTEM_ACTOR_USERNAME,
                    )
                )
                revoked_count = result.rowcount or 0
                db.add(self._new_row(jti, username, expires_at))
                await db.flush()
        except SQLAlchemyError as e:
            logger.error(f"Exclusive session save failed for {username}, rolled back: {e}")
            raise SessionStorageError("Failed to save session") from e

        if revoked_count:
            logger.info(f"Revoked {revoked_count} prior session(s) for {username}")
        return revoked_count

    async def validate(self, jti: str) -> None:
        """Check that a session exists, is not revoked and has not expired.

        Raises:
            SessionNotFoundError: No row for this JTI.
            SessionRevokedError: Row is revoked or expired.
        """
        try:
            async with self._session_maker() as db:
                result = await db.execute(
                    select(SessionToken.revoked, SessionToken.expires_at).where(
                        SessionToken.jti == jti
                    )
                )
                row = result.one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Session lookup failed for {jti}: {e}")
            raise SessionStorageError("Failed to look up session") from e

        if row is None:
            raise SessionNotFoundError(f"Session not found: {jti}")
        revoked, expires_at = row
        if revoked or time.time() > expires_at:
            raise SessionRevokedError(f"Session revoked or expired: {jti}")

    async def revoke(self, jti: str, actor_id: int, actor_username: str) -> None:
        """Mark one session revoked, attributing it to the acting user.

        Raises:
            SessionNotFoundError: No row for this JTI.
            SessionAlreadyRevokedError: The row was already revoked; the
                original revoker is left untouched.
        """
        try:
            async with self._session_maker() as db, db.begin():
                result = await db.execute(
                    update(SessionToken)
                    .where(SessionToken.jti == jti, SessionToken.revoked.is_(False))
                    .values(
                        revoked=True,
                        revoked_by_id=actor_id,
                        revoked_by_username=actor_username,
                    )
                )
                if result.rowcount:
                    return
                exists = await db.scalar(select(SessionToken.id).where(SessionToken.jti == jti))
        except SQLAlchemyError as e:
            logger.error(f"Failed to revoke session {jti}: {e}")
            raise SessionStorageError("Failed to revoke session") from e

        if exists is None:
            raise SessionNotFoundError(f"Session not found: {jti}")
        raise SessionAlreadyRevokedError(f"Session already revoked: {jti}")

    async def list_all(self) -> list[SessionToken]:
        """Return every ledger row, newest first."""
        try:
            async with self._session_maker() as db:
                result = await db.execute(
                    select(SessionToken).order_by(
                        desc(SessionToken.created_at), desc(SessionToken.id)
                    )
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to list sessions: {e}")
            raise SessionStorageError("Failed to list sessions") from e

    @staticmethod
    def _new_row(jti: str, username: str, expires_at: int) -> SessionToken:
        return SessionToken(
            jti=jti,
            username=username,
            revoked=False,
            expires_at=expires_at,
            created_at=int(time.time()),
        )
