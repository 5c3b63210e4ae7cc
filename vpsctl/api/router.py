"""VPS Control API Router - aggregates all API routes."""

from fastapi import APIRouter, Depends

from vpsctl.api import auth, fail2ban, pm2
from vpsctl.middleware.authorization import require_session

# Host control: every route needs a live session before its permission guard runs
vps_router = APIRouter(prefix="/vps", dependencies=[Depends(require_session)])
vps_router.include_router(pm2.router)
vps_router.include_router(fail2ban.router)

# Main API router - all routes will be prefixed with /api
api_router = APIRouter(prefix="/api")

api_router.include_router(auth.router)
api_router.include_router(vps_router)
