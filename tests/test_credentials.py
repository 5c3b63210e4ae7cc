"""Tests for the credential store gateway."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from tests.conftest import (
    ADMIN_PASSWORD,
    ADMIN_USERNAME,
    INACTIVE_PASSWORD,
    INACTIVE_USERNAME,
    VIEWER_USERNAME,
)
from vpsctl.services.credentials import (
    AuthManager,
    CredentialService,
    InvalidCredentialsError,
    RoleNotFoundError,
    UserInactiveError,
    UserNotFoundError,
    hash_password,
    verify_password,
)


@pytest_asyncio.fixture
async def db(app) -> AsyncGenerator[AsyncSession, None]:
    async with app.state.db_session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def service(db) -> CredentialService:
    return CredentialService(db)


class TestPasswordHashing:
    def test_hash_and_verify(self):
        hashed = hash_password("correct-horse")

        assert hashed.startswith("$argon2id$")
        assert verify_password("correct-horse", hashed) is True
        assert verify_password("wrong-horse", hashed) is False

    def test_garbage_hash(self):
        assert verify_password("anything", "not-a-hash") is False


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_success_records_last_login(self, service):
        user = await service.authenticate(ADMIN_USERNAME, ADMIN_PASSWORD)

        assert user.username == ADMIN_USERNAME
        assert user.last_login is not None

    @pytest.mark.asyncio
    async def test_wrong_password(self, service):
        with pytest.raises(InvalidCredentialsError):
            await service.authenticate(ADMIN_USERNAME, "not-the-password")

    @pytest.mark.asyncio
    async def test_unknown_user(self, service):
        with pytest.raises(InvalidCredentialsError):
            await service.authenticate("nobody", "whatever123")

    @pytest.mark.asyncio
    async def test_inactive_user(self, service):
        with pytest.raises(UserInactiveError):
            await service.authenticate(INACTIVE_USERNAME, INACTIVE_PASSWORD)


class TestRolesAndPermissions:
    @pytest.mark.asyncio
    async def test_roles_sorted(self, service):
        viewer = await service.get_user_by_username(VIEWER_USERNAME)
        await service.create_role("auditor")
        await service.assign_role(viewer.id, "auditor")

        assert await service.get_user_roles(viewer.id) == ["auditor", "viewer"]

    @pytest.mark.asyncio
    async def test_permissions_distinct_across_roles(self, service):
        viewer = await service.get_user_by_username(VIEWER_USERNAME)
        await service.create_role("auditor")
        await service.grant_permission("auditor", "pm2.view.basic")
        await service.grant_permission("auditor", "f2b.view.jail")
        await service.assign_role(viewer.id, "auditor")

        assert await service.get_user_permissions(viewer.id) == [
            "f2b.view.jail",
            "f2b.view.status",
            "pm2.view.basic",
        ]

    @pytest.mark.asyncio
    async def test_user_without_roles(self, service):
        user = await service.create_user("loner", "lonerpass123")

        assert await service.get_user_roles(user.id) == []
        assert await service.get_user_permissions(user.id) == []

    @pytest.mark.asyncio
    async def test_has_permission(self, service):
        viewer = await service.get_user_by_username(VIEWER_USERNAME)

        assert await service.has_permission(viewer.id, "pm2.view.basic") is True
        assert await service.has_permission(viewer.id, "pm2.control.stop") is False

    @pytest.mark.asyncio
    async def test_assign_role_twice_is_noop(self, service):
        viewer = await service.get_user_by_username(VIEWER_USERNAME)

        await service.assign_role(viewer.id, "viewer")

        assert await service.get_user_roles(viewer.id) == ["viewer"]

    @pytest.mark.asyncio
    async def test_remove_role(self, service):
        viewer = await service.get_user_by_username(VIEWER_USERNAME)

        await service.remove_role(viewer.id, "viewer")

        assert await service.get_user_permissions(viewer.id) == []

    @pytest.mark.asyncio
    async def test_unknown_role(self, service):
        viewer = await service.get_user_by_username(VIEWER_USERNAME)

        with pytest.raises(RoleNotFoundError):
            await service.assign_role(viewer.id, "ghost")
        with pytest.raises(RoleNotFoundError):
            await service.grant_permission("ghost", "pm2.view.basic")

    @pytest.mark.asyncio
    async def test_unknown_user(self, service):
        with pytest.raises(UserNotFoundError):
            await service.assign_role(99999, "viewer")

    @pytest.mark.asyncio
    async def test_listings(self, service):
        roles = [r.name for r in await service.list_roles()]
        permissions = [p.name for p in await service.list_permissions()]

        assert roles == ["admin", "viewer"]
        assert permissions == sorted(permissions)
        assert "user.edit" in permissions


class TestAuthManager:
    @pytest.mark.asyncio
    async def test_login_collects_roles_and_permissions(self, service):
        result = await AuthManager(service).login(VIEWER_USERNAME, "viewerpass123")

        assert result.user.username == VIEWER_USERNAME
        assert result.roles == ["viewer"]
        assert result.permissions == ["f2b.view.status", "pm2.view.basic"]

    @pytest.mark.asyncio
    async def test_login_failure_propagates(self, service):
        with pytest.raises(InvalidCredentialsError):
            await AuthManager(service).login(VIEWER_USERNAME, "wrongpass123")
