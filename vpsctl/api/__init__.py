# VPS Control API Routes
from vpsctl.api.router import api_router

__all__ = ["api_router"]
