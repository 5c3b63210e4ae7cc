"""fail2ban endpoints."""

import logging

from fastapi import APIRouter, Depends, Path

from vpsctl.api.deps import get_ban_manager, get_errors
from vpsctl.core.errors import APIError, ErrorCatalog
from vpsctl.core.permissions import (
    PERM_F2B_CONTROL_UNBAN,
    PERM_F2B_VIEW_JAIL,
    PERM_F2B_VIEW_STATUS,
)
from vpsctl.middleware.authorization import Identity, require_permission
from vpsctl.schemas.vps import (
    Fail2BanStatusResponse,
    JailDetailsResponse,
    UnbanRequest,
    UnbanResponse,
)
from vpsctl.services.vps import BanManager, CommandError, IPNotBannedError, JailNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/fail2ban", tags=["fail2ban"])


@router.get(
    "/status",
    response_model=Fail2BanStatusResponse,
    dependencies=[Depends(require_permission(PERM_F2B_VIEW_STATUS))],
)
async def get_status(
    ban_manager: BanManager = Depends(get_ban_manager),
    errors: ErrorCatalog = Depends(get_errors),
) -> Fail2BanStatusResponse:
    """List configured jails."""
    try:
        return await ban_manager.status()
    except CommandError as e:
        raise APIError(errors.COMMAND_EXECUTION_ERROR) from e


@router.get(
    "/status/{jail}",
    response_model=JailDetailsResponse,
    dependencies=[Depends(require_permission(PERM_F2B_VIEW_JAIL))],
)
async def get_jail_details(
    jail: str = Path(..., min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_.\-]+$"),
    ban_manager: BanManager = Depends(get_ban_manager),
    errors: ErrorCatalog = Depends(get_errors),
) -> JailDetailsResponse:
    """Failure/ban counters and the banned IP list for one jail."""
    try:
        return await ban_manager.jail_details(jail)
    except JailNotFoundError as e:
        raise APIError(errors.FAIL2BAN_JAIL_NOT_FOUND) from e
    except CommandError as e:
        raise APIError(errors.COMMAND_EXECUTION_ERROR) from e


@router.post("/unban", response_model=UnbanResponse)
async def unban_ip(
    body: UnbanRequest,
    identity: Identity = Depends(require_permission(PERM_F2B_CONTROL_UNBAN)),
    ban_manager: BanManager = Depends(get_ban_manager),
    errors: ErrorCatalog = Depends(get_errors),
) -> UnbanResponse:
    ip = str(body.ip)
    try:
        await ban_manager.unban(body.jail, ip)
    except IPNotBannedError as e:
        raise APIError(errors.FAIL2BAN_IP_NOT_BANNED) from e
    except JailNotFoundError as e:
        raise APIError(errors.FAIL2BAN_JAIL_NOT_FOUND) from e
    except CommandError as e:
        raise APIError(errors.COMMAND_EXECUTION_ERROR) from e

    logger.info(f"Unban {ip} from {body.jail} by {identity.username}")
    return UnbanResponse(message="IP unbanned successfully")
