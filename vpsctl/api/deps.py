"""Dependencies resolving the services wired onto app.state by create_app."""

from fastapi import Request

from vpsctl.core.errors import ErrorCatalog
from vpsctl.services.cookie import CookieService
from vpsctl.services.session_store import TokenStore
from vpsctl.services.token import TokenService
from vpsctl.services.vps import BanManager, ProcessSupervisor


def get_errors(request: Request) -> ErrorCatalog:
    return request.app.state.errors


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_session_store(request: Request) -> TokenStore:
    return request.app.state.session_store


def get_cookie_service(request: Request) -> CookieService:
    return request.app.state.cookie_service


def get_process_supervisor(request: Request) -> ProcessSupervisor:
    return request.app.state.process_supervisor


def get_ban_manager(request: Request) -> BanManager:
    return request.app.state.ban_manager
