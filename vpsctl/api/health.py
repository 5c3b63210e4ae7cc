"""Health check endpoint with session ledger connectivity check.

Accessible without authentication so process supervisors and load balancers
can probe it.
"""

from fastapi import APIRouter, Request, Response, status
from pydantic import BaseModel

from vpsctl.core import check_db_connection

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    session_store: str


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        status.HTTP_200_OK: {"description": "Service is healthy"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Service is unhealthy"},
    },
)
async def health_check(request: Request, response: Response) -> HealthResponse:
    """
    Health check endpoint.

    Returns 503 if the session ledger is unreachable, since no authenticated
    request can succeed without it.
    """
    ledger_healthy = await check_db_connection(request.app.state.ledger_engine)

    if not ledger_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if ledger_healthy else "unhealthy",
        version=request.app.state.settings.app_version,
        session_store="connected" if ledger_healthy else "disconnected",
    )
