"""VPS Control Backend - FastAPI Application Factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vpsctl.api import api_router
from vpsctl.api.health import router as health_router
from vpsctl.core import Settings, get_settings, load_error_catalog, setup_logging
from vpsctl.core.database import (
    build_engine,
    build_ledger_engine,
    build_session_maker,
    init_ledger_schema,
)
from vpsctl.core.errors import register_exception_handlers
from vpsctl.core.logging import get_logger
from vpsctl.middleware import (
    API_THROTTLE_SWEEP_INTERVAL,
    InputSanitizerMiddleware,
    LOGIN_THROTTLE_SWEEP_INTERVAL,
    LoginThrottle,
    LoginThrottleMiddleware,
    RateLimiter,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
    SessionAuthenticator,
    throttle_cleanup_loop,
)
from vpsctl.services.cookie import CookieService
from vpsctl.services.session_store import SessionStore
from vpsctl.services.token import TokenService
from vpsctl.services.vps import BanManager, CommandRunner, ProcessSupervisor

logger = get_logger("main")


def task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings: Settings = app.state.settings

    setup_logging(
        level=settings.log_level,
        format_type="structured" if not settings.debug else "dev",
    )
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    for warning in settings.check_security_configuration():
        logger.warning(f"SECURITY: {warning}")

    await init_ledger_schema(app.state.ledger_engine)

    tasks: list[asyncio.Task[None]] = []
    for throttle, interval, name in (
        (app.state.login_throttle, LOGIN_THROTTLE_SWEEP_INTERVAL, "Login throttle"),
        (app.state.rate_limiter, API_THROTTLE_SWEEP_INTERVAL, "API rate limit"),
    ):
        task = asyncio.create_task(throttle_cleanup_loop(throttle, interval, name), name=name)
        task.add_done_callback(task_done_callback)
        tasks.append(task)

    yield

    # Shutdown
    logger.info("Shutting down...")
    for task in tasks:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    await app.state.ledger_engine.dispose()
    await app.state.db_engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Control panel for PM2 processes and fail2ban jails",
        version=settings.app_version,
        lifespan=lifespan,
        # API schema is only published in debug mode
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    errors = load_error_catalog(settings.error_catalog_path)
    trusted_proxies = settings.trusted_proxy_ips_set

    # Credential store
    db_engine = build_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
    )

    # Session ledger
    ledger_engine = build_ledger_engine(settings.session_db_path)

    token_service = TokenService(
        secret=settings.jwt_secret,
        issuer=settings.jwt_issuer,
        ttl=settings.jwt_ttl,
        leeway=settings.jwt_leeway,
    )
    session_store = SessionStore(build_session_maker(ledger_engine))
    login_throttle = LoginThrottle(
        max_attempts=settings.auth_rate_limit_max_attempts,
        block_time=settings.auth_rate_limit_block_time,
    )
    rate_limiter = RateLimiter(
        limit=settings.api_rate_limit_limit,
        window=settings.api_rate_limit_window,
    )
    runner = CommandRunner(timeout=settings.command_timeout)

    app.state.settings = settings
    app.state.errors = errors
    app.state.db_engine = db_engine
    app.state.db_session_maker = build_session_maker(db_engine)
    app.state.ledger_engine = ledger_engine
    app.state.token_service = token_service
    app.state.session_store = session_store
    cookie_service = CookieService(
        name=settings.cookie_name,
        ttl=token_service.ttl,
        secure=settings.cookie_secure,
        http_only=settings.cookie_http_only,
        same_site=settings.cookie_same_site,
    )
    app.state.cookie_service = cookie_service
    app.state.authenticator = SessionAuthenticator(
        token_service=token_service,
        session_store=session_store,
        cookies=cookie_service,
        errors=errors,
    )
    app.state.login_throttle = login_throttle
    app.state.rate_limiter = rate_limiter
    app.state.process_supervisor = ProcessSupervisor(runner, pm2_binary=settings.pm2_binary)
    app.state.ban_manager = BanManager(runner, use_sudo=settings.fail2ban_use_sudo)

    register_exception_handlers(app, errors)

    # Starlette runs the last added middleware first, so these are added
    # innermost to outermost: login throttle, API throttle, input screening,
    # headers, CORS.
    app.add_middleware(
        LoginThrottleMiddleware,
        throttle=login_throttle,
        errors=errors,
        path_prefix="/api/auth",
        trusted_proxies=trusted_proxies,
    )
    app.add_middleware(
        RateLimitMiddleware,
        limiter=rate_limiter,
        errors=errors,
        protected_prefixes=["/api/vps"],
        trusted_proxies=trusted_proxies,
    )
    app.add_middleware(
        InputSanitizerMiddleware,
        errors=errors,
        path_prefix="/api",
        trusted_proxies=trusted_proxies,
    )
    app.add_middleware(SecurityHeadersMiddleware, trusted_proxies=trusted_proxies)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "Accept",
            "X-Request-ID",
        ],
    )

    # Prometheus metrics (before routers so /metrics endpoint is registered first)
    if settings.enable_metrics:
        from prometheus_fastapi_instrumentator import Instrumentator

        Instrumentator(
            excluded_handlers=["/health", "/metrics"],
        ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    app.include_router(health_router)  # Health at root level
    app.include_router(api_router)  # API at /api

    return app


# Application instance
app = create_app()
