"""Pydantic schemas for the process supervisor and ban manager APIs."""

from enum import Enum
from ipaddress import IPv4Address, IPv6Address

from pydantic import BaseModel, Field


class ProcessAction(str, Enum):
    """Control actions accepted by the process supervisor."""

    START = "start"
    STOP = "stop"
    RESTART = "restart"


class ProcessBasic(BaseModel):
    name: str
    pid: int
    active: bool


class ProcessWithCwd(ProcessBasic):
    cwd: str = ""


class ProcessFull(ProcessWithCwd):
    mem: float = Field(default=0.0, description="Resident memory in MiB")
    cpu: float = Field(default=0.0, description="CPU usage percent")
    started_at: str = Field(default="", description="ISO-8601 start time, empty if unknown")


# Processes grouped by PM2 namespace
ProcessBasicGrouped = dict[str, list[ProcessBasic]]
ProcessWithCwdGrouped = dict[str, list[ProcessWithCwd]]
ProcessFullGrouped = dict[str, list[ProcessFull]]


class ProcessActionResponse(BaseModel):
    """Result of a start/stop/restart."""

    success: bool = True
    action: ProcessAction
    target: str
    message: str


class Fail2BanStatusResponse(BaseModel):
    jail_count: int
    jail_list: list[str]


class JailDetailsResponse(BaseModel):
    jail_name: str
    currently_failed: int = 0
    total_failed: int = 0
    currently_banned: int = 0
    total_banned: int = 0
    banned_ip_list: list[str] = Field(default_factory=list)


class UnbanRequest(BaseModel):
    """Request to lift a ban; the IP must parse as IPv4 or IPv6."""

    jail: str = Field(..., min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_.\-]+$")
    ip: IPv4Address | IPv6Address


class UnbanResponse(BaseModel):
    success: bool = True
    message: str
