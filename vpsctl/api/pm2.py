"""PM2 process supervisor endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Path

from vpsctl.api.deps import get_errors, get_process_supervisor
from vpsctl.core.errors import APIError, ErrorCatalog
from vpsctl.core.permissions import (
    PERM_PM2_CONTROL_RESTART,
    PERM_PM2_CONTROL_START,
    PERM_PM2_CONTROL_STOP,
    PERM_PM2_VIEW_BASIC,
    PERM_PM2_VIEW_CWD,
    PERM_PM2_VIEW_FULL,
)
from vpsctl.middleware.authorization import Identity, require_permission
from vpsctl.schemas.vps import (
    ProcessAction,
    ProcessActionResponse,
    ProcessBasicGrouped,
    ProcessFullGrouped,
    ProcessWithCwdGrouped,
)
from vpsctl.services.vps import (
    CommandError,
    ProcessAlreadyRunningError,
    ProcessAlreadyStoppedError,
    ProcessNotFoundError,
    ProcessSupervisor,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pm2", tags=["pm2"])

ProcessTarget = Annotated[
    str, Path(min_length=1, max_length=128, description="Process name or PID")
]

ACTION_MESSAGES = {
    ProcessAction.START: "process started successfully",
    ProcessAction.STOP: "process stopped successfully",
    ProcessAction.RESTART: "process restarted successfully",
}


@router.get(
    "/processes/basic",
    response_model=ProcessBasicGrouped,
    dependencies=[Depends(require_permission(PERM_PM2_VIEW_BASIC))],
)
async def list_processes_basic(
    supervisor: ProcessSupervisor = Depends(get_process_supervisor),
    errors: ErrorCatalog = Depends(get_errors),
) -> ProcessBasicGrouped:
    """Processes grouped by PM2 namespace: name, PID and whether online."""
    try:
        return await supervisor.list_basic()
    except CommandError as e:
        raise APIError(errors.COMMAND_EXECUTION_ERROR) from e


@router.get(
    "/processes/cwd",
    response_model=ProcessWithCwdGrouped,
    dependencies=[Depends(require_permission(PERM_PM2_VIEW_CWD))],
)
async def list_processes_with_cwd(
    supervisor: ProcessSupervisor = Depends(get_process_supervisor),
    errors: ErrorCatalog = Depends(get_errors),
) -> ProcessWithCwdGrouped:
    try:
        return await supervisor.list_with_cwd()
    except CommandError as e:
        raise APIError(errors.COMMAND_EXECUTION_ERROR) from e


@router.get(
    "/processes/full",
    response_model=ProcessFullGrouped,
    dependencies=[Depends(require_permission(PERM_PM2_VIEW_FULL))],
)
async def list_processes_full(
    supervisor: ProcessSupervisor = Depends(get_process_supervisor),
    errors: ErrorCatalog = Depends(get_errors),
) -> ProcessFullGrouped:
    """Processes with working directory, memory, CPU and start time."""
    try:
        return await supervisor.list_full()
    except CommandError as e:
        raise APIError(errors.COMMAND_EXECUTION_ERROR) from e


async def _run_action(
    action: ProcessAction,
    target: str,
    identity: Identity,
    supervisor: ProcessSupervisor,
    errors: ErrorCatalog,
) -> ProcessActionResponse:
    try:
        resolved = await supervisor.control(action, target)
    except ProcessNotFoundError as e:
        raise APIError(errors.PM2_PROCESS_NOT_FOUND) from e
    except ProcessAlreadyRunningError as e:
        raise APIError(errors.PROCESS_ALREADY_RUNNING) from e
    except ProcessAlreadyStoppedError as e:
        raise APIError(errors.PROCESS_ALREADY_STOPPED) from e
    except CommandError as e:
        raise APIError(errors.COMMAND_EXECUTION_ERROR) from e

    logger.info(f"PM2 {action.value} on {resolved} by {identity.username}")
    return ProcessActionResponse(action=action, target=resolved, message=ACTION_MESSAGES[action])


@router.post("/{name}/start", response_model=ProcessActionResponse)
async def start_process(
    name: ProcessTarget,
    identity: Identity = Depends(require_permission(PERM_PM2_CONTROL_START)),
    supervisor: ProcessSupervisor = Depends(get_process_supervisor),
    errors: ErrorCatalog = Depends(get_errors),
) -> ProcessActionResponse:
    return await _run_action(ProcessAction.START, name, identity, supervisor, errors)


@router.post("/{name}/stop", response_model=ProcessActionResponse)
async def stop_process(
    name: ProcessTarget,
    identity: Identity = Depends(require_permission(PERM_PM2_CONTROL_STOP)),
    supervisor: ProcessSupervisor = Depends(get_process_supervisor),
    errors: ErrorCatalog = Depends(get_errors),
) -> ProcessActionResponse:
    return await _run_action(ProcessAction.STOP, name, identity, supervisor, errors)


@router.post("/{name}/restart", response_model=ProcessActionResponse)
async def restart_process(
    name: ProcessTarget,
    identity: Identity = Depends(require_permission(PERM_PM2_CONTROL_RESTART)),
    supervisor: ProcessSupervisor = Depends(get_process_supervisor),
    errors: ErrorCatalog = Depends(get_errors),
) -> ProcessActionResponse:
    return await _run_action(ProcessAction.RESTART, name, identity, supervisor, errors)
