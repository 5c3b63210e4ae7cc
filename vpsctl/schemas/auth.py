"""Pydantic schemas for authentication API."""

from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    """Request for login."""

    username: str = Field(
        ...,
        min_length=3,
        max_length=32,
        pattern=r"^[a-zA-Z0-9]+$",
        description="Username (3-32 alphanumeric characters)",
    )
    password: str = Field(
        ...,
        min_length=8,
        max_length=128,
        pattern=r"^[^ ]+$",
        description="Password (8-128 characters, no spaces)",
    )


class LoginResponse(BaseModel):
    """Response after a successful login; the token travels in the cookie."""

    success: bool = True
    message: str


class VerifyResponse(BaseModel):
    """Response for a session check."""

    success: bool = True
    message: str = "ok"
    username: str | None = None


class MessageResponse(BaseModel):
    """Generic message response."""

    success: bool = True
    message: str


class SessionResponse(BaseModel):
    """One session ledger row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    jti: str
    username: str
    revoked: bool
    revoked_by_id: int | None = None
    revoked_by_username: str | None = None
    expires_at: int
    created_at: int


class SessionListResponse(BaseModel):
    """All ledger rows, newest first."""

    sessions: list[SessionResponse]
    total: int


class RevokeSessionRequest(BaseModel):
    """Request to revoke a session by JTI."""

    jti: str = Field(..., min_length=1)
