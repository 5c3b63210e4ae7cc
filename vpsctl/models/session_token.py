"""Issued session tokens - the local session ledger."""

from sqlalchemy import BigInteger, Boolean, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from vpsctl.core.database import LedgerBase


class SessionToken(LedgerBase):
    """One row per issued token, keyed by its JTI.

    Rows are never deleted by the application: logout and administrative
    revocation only flip ``revoked`` and record who did it, so the table
    doubles as an audit trail. ``revoked_by_*`` is NULL until revoked; the
    login path attributes bulk revocations to the SYSTEM actor.
    """

    __tablename__ = "tokens"
    __table_args__ = (
        Index("idx_tokens_jti", "jti"),
        Index("idx_tokens_username", "username"),
        Index("idx_tokens_revoked", "revoked"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    jti: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String, nullable=False)
    revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    revoked_by_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    revoked_by_username: Mapped[str | None] = mapped_column(String, nullable=True)
    # Epoch seconds
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        server_default=text("(strftime('%s', 'now'))"),
    )

    def __repr__(self) -> str:
        return f"<SessionToken {self.jti} user={self.username} revoked={self.revoked}>"
