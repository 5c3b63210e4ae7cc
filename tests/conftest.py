"""Pytest configuration and fixtures for backend tests.

Both stores run on throwaway SQLite files: the credential store normally
lives in PostgreSQL, but the ORM models are portable, so tests create the
schema directly instead of needing a server.
"""

import os
import tempfile
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient, Response

# Set test environment variables before importing app modules
_TEST_DIR = Path(tempfile.mkdtemp(prefix="vpsctl-tests-"))
os.environ["JWT_SECRET"] = "test-secret-for-vpsctl-tests-0123456789abcdef"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR / 'credentials.db'}"
os.environ["SESSION_DB_PATH"] = str(_TEST_DIR / "tokens.db")

from fastapi import FastAPI  # noqa: E402

import vpsctl.models  # noqa: E402, F401
from vpsctl.core.config import Settings  # noqa: E402
from vpsctl.core.database import Base, init_ledger_schema  # noqa: E402
from vpsctl.core.permissions import (  # noqa: E402
    ALL_PERMISSIONS,
    PERM_F2B_VIEW_STATUS,
    PERM_PM2_VIEW_BASIC,
)
from vpsctl.main import create_app  # noqa: E402
from vpsctl.services.credentials import CredentialService  # noqa: E402

TEST_JWT_SECRET = os.environ["JWT_SECRET"]

# Test users
ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "adminpass123"
VIEWER_USERNAME = "viewer"
VIEWER_PASSWORD = "viewerpass123"
INACTIVE_USERNAME = "retired"
INACTIVE_PASSWORD = "retiredpass123"

BASE_URL = "https://testserver"


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    """Settings pointing both stores at files under tmp_path."""
    values: dict[str, Any] = {
        "jwt_secret": TEST_JWT_SECRET,
        "database_url": f"sqlite+aiosqlite:///{tmp_path / 'credentials.db'}",
        "session_db_path": str(tmp_path / "tokens.db"),
        "api_rate_limit_limit": 10000,
    }
    values.update(overrides)
    return Settings(**values)


async def prepare_app(settings: Settings) -> FastAPI:
    """Build the app and create both schemas (ASGITransport skips lifespan)."""
    application = create_app(settings)
    async with application.state.db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await init_ledger_schema(application.state.ledger_engine)
    return application


async def seed_users(application: FastAPI) -> None:
    """Create an admin with every permission, a limited viewer and an inactive user."""
    async with application.state.db_session_maker() as db:
        service = CredentialService(db)

        await service.create_role("admin", "Full access")
        for permission in ALL_PERMISSIONS:
            await service.grant_permission("admin", permission)

        await service.create_role("viewer", "Read-only basics")
        await service.grant_permission("viewer", PERM_PM2_VIEW_BASIC)
        await service.grant_permission("viewer", PERM_F2B_VIEW_STATUS)

        admin = await service.create_user(ADMIN_USERNAME, ADMIN_PASSWORD)
        await service.assign_role(admin.id, "admin")

        viewer = await service.create_user(VIEWER_USERNAME, VIEWER_PASSWORD)
        await service.assign_role(viewer.id, "viewer")

        await service.create_user(INACTIVE_USERNAME, INACTIVE_PASSWORD, active=False)


async def dispose_app(application: FastAPI) -> None:
    await application.state.db_engine.dispose()
    await application.state.ledger_engine.dispose()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest_asyncio.fixture
async def app(test_settings: Settings) -> AsyncGenerator[FastAPI, None]:
    """Application with both stores created and the test users seeded."""
    application = await prepare_app(test_settings)
    await seed_users(application)
    yield application
    await dispose_app(application)


@pytest_asyncio.fixture
async def app_factory(tmp_path: Path) -> AsyncGenerator[Callable[..., Any], None]:
    """Build seeded apps with custom settings, e.g. tighter throttles."""
    created: list[FastAPI] = []

    async def factory(**overrides: Any) -> FastAPI:
        directory = tmp_path / f"app{len(created)}"
        directory.mkdir()
        application = await prepare_app(make_settings(directory, **overrides))
        await seed_users(application)
        created.append(application)
        return application

    yield factory

    for application in created:
        await dispose_app(application)


def make_client(application: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=application), base_url=BASE_URL)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the app; keeps cookies between requests."""
    async with make_client(app) as ac:
        yield ac


async def login(client: AsyncClient, username: str, password: str) -> Response:
    return await client.post(
        "/api/auth/login",
        json={"username": username, "password": password},
    )


async def login_token(client: AsyncClient, username: str, password: str) -> str:
    """Log in and return the raw session token from the Set-Cookie header."""
    response = await login(client, username, password)
    assert response.status_code == 200, response.text
    token = response.cookies.get("vps_auth")
    assert token
    return token


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def admin_token(client: AsyncClient) -> str:
    token = await login_token(client, ADMIN_USERNAME, ADMIN_PASSWORD)
    client.cookies.clear()
    return token


@pytest_asyncio.fixture
async def viewer_token(client: AsyncClient) -> str:
    token = await login_token(client, VIEWER_USERNAME, VIEWER_PASSWORD)
    client.cookies.clear()
    return token
