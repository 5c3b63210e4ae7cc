# VPS Control Pydantic Schemas
from vpsctl.schemas.auth import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RevokeSessionRequest,
    SessionListResponse,
    SessionResponse,
    VerifyResponse,
)
from vpsctl.schemas.vps import (
    Fail2BanStatusResponse,
    JailDetailsResponse,
    ProcessAction,
    ProcessActionResponse,
    ProcessBasic,
    ProcessFull,
    ProcessWithCwd,
    UnbanRequest,
    UnbanResponse,
)

__all__ = [
    # Auth
    "LoginRequest",
    "LoginResponse",
    "MessageResponse",
    "RevokeSessionRequest",
    "SessionListResponse",
    "SessionResponse",
    "VerifyResponse",
    # VPS
    "Fail2BanStatusResponse",
    "JailDetailsResponse",
    "ProcessAction",
    "ProcessActionResponse",
    "ProcessBasic",
    "ProcessFull",
    "ProcessWithCwd",
    "UnbanRequest",
    "UnbanResponse",
]
