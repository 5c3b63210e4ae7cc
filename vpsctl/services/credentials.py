"""Credential store gateway: authentication and role/permission lookups."""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import lru_cache
from typing import Protocol

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from sqlalchemy import delete, exists, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from vpsctl.models.user import Permission, Role, User, role_permissions, user_roles

logger = logging.getLogger(__name__)

# Argon2 password hasher with recommended parameters
# Memory: 64 MiB, Time: 3 iterations, Parallelism: 4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)


class AuthError(Exception):
    """Base authentication error."""

    pass


class InvalidCredentialsError(AuthError):
    """Invalid username or password."""

    pass


class UserInactiveError(AuthError):
    """User account is deactivated."""

    pass


class UserNotFoundError(AuthError):
    """No user with the given ID or name."""

    pass


class RoleNotFoundError(AuthError):
    """No role with the given name."""

    pass


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash using constant-time comparison."""
    try:
        ph.verify(password_hash, password)
        return True
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password("timing-equalizer")


class CredentialGateway(Protocol):
    """What the auth flow needs from the user database."""

    async def authenticate(self, username: str, password: str) -> User: ...

    async def get_user_roles(self, user_id: int) -> list[str]: ...

    async def get_user_permissions(self, user_id: int) -> list[str]: ...


class CredentialService:
    """SQLAlchemy implementation of the credential gateway."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user_by_username(self, username: str) -> User | None:
        result = await self.session.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: int) -> User | None:
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def authenticate(self, username: str, password: str) -> User:
        """Authenticate a user and return the user object.

        Raises InvalidCredentialsError for both "user not found" and
        "wrong password" to prevent user enumeration.
        """
        user = await self.get_user_by_username(username)

        if user is None:
            # Perform a dummy verification to prevent timing attacks
            verify_password(password, _dummy_hash())
            raise InvalidCredentialsError("Invalid username or password")

        if not user.active:
            raise UserInactiveError("User account is deactivated")

        if not verify_password(password, user.password_hash):
            raise InvalidCredentialsError("Invalid username or password")

        user.last_login = datetime.now(UTC)
        await self.session.commit()

        return user

    async def get_user_roles(self, user_id: int) -> list[str]:
        """Role names assigned to a user, sorted."""
        result = await self.session.execute(
            select(Role.name)
            .join(user_roles, Role.id == user_roles.c.role_id)
            .where(user_roles.c.user_id == user_id)
            .order_by(Role.name)
        )
        return list(result.scalars().all())

    async def get_user_permissions(self, user_id: int) -> list[str]:
        """Distinct permission names granted through any of the user's roles, sorted."""
        result = await self.session.execute(
            select(Permission.name)
            .distinct()
            .join(role_permissions, Permission.id == role_permissions.c.permission_id)
            .join(user_roles, role_permissions.c.role_id == user_roles.c.role_id)
            .where(user_roles.c.user_id == user_id)
            .order_by(Permission.name)
        )
        return list(result.scalars().all())

    async def has_permission(self, user_id: int, permission: str) -> bool:
        result = await self.session.execute(
            select(
                exists()
                .where(Permission.name == permission)
                .where(Permission.id == role_permissions.c.permission_id)
                .where(role_permissions.c.role_id == user_roles.c.role_id)
                .where(user_roles.c.user_id == user_id)
            )
        )
        return bool(result.scalar())

    async def create_user(self, username: str, password: str, active: bool = True) -> User:
        """Create an operator account."""
        user = User(username=username, password_hash=hash_password(password), active=active)
        self.session.add(user)
        await self.session.commit()
        await self.session.refresh(user)

        logger.info(f"Created user: {username}")
        return user

    async def create_role(self, name: str, description: str | None = None) -> Role:
        role = Role(name=name, description=description)
        self.session.add(role)
        await self.session.commit()
        await self.session.refresh(role)
        return role

    async def grant_permission(self, role_name: str, permission_name: str) -> None:
        """Grant a permission to a role, creating the permission if needed."""
        role = await self.session.scalar(select(Role).where(Role.name == role_name))
        if role is None:
            raise RoleNotFoundError(f"Role not found: {role_name}")

        permission = await self.session.scalar(
            select(Permission).where(Permission.name == permission_name)
        )
        if permission is None:
            permission = Permission(name=permission_name)
            self.session.add(permission)
            await self.session.flush()

        already = await self.session.scalar(
            select(
                exists().where(
                    role_permissions.c.role_id == role.id,
                    role_permissions.c.permission_id == permission.id,
                )
            )
        )
        if not already:
            await self.session.execute(
                insert(role_permissions).values(role_id=role.id, permission_id=permission.id)
            )
        await self.session.commit()

    async def assign_role(self, user_id: int, role_name: str) -> None:
        """Assign a role to a user; assigning an already-held role is a no-op."""
        role_id = await self.session.scalar(select(Role.id).where(Role.name == role_name))
        if role_id is None:
            raise RoleNotFoundError(f"Role not found: {role_name}")
        if await self.get_user_by_id(user_id) is None:
            raise UserNotFoundError(f"User not found: {user_id}")

        already = await self.session.scalar(
            select(
                exists().where(user_roles.c.user_id == user_id, user_roles.c.role_id == role_id)
            )
        )
        if not already:
            await self.session.execute(insert(user_roles).values(user_id=user_id, role_id=role_id))
        await self.session.commit()

        logger.info(f"Role assigned: user_id={user_id} role={role_name}")

    async def remove_role(self, user_id: int, role_name: str) -> None:
        role_id = await self.session.scalar(select(Role.id).where(Role.name == role_name))
        if role_id is None:
            return
        await self.session.execute(
            delete(user_roles).where(
                user_roles.c.user_id == user_id, user_roles.c.role_id == role_id
            )
        )
        await self.session.commit()

    async def list_roles(self) -> list[Role]:
        result = await self.session.execute(select(Role).order_by(Role.name))
        return list(result.scalars().all())

    async def list_permissions(self) -> list[Permission]:
        result = await self.session.execute(select(Permission).order_by(Permission.name))
        return list(result.scalars().all())


@dataclass
class AuthResult:
    """Outcome of a successful credential check."""

    user: User
    roles: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)


class AuthManager:
    """Combines authentication with the role/permission lookups for a login."""

    def __init__(self, gateway: CredentialGateway):
        self.gateway = gateway

    async def login(self, username: str, password: str) -> AuthResult:
        user = await self.gateway.authenticate(username, password)
        roles = await self.gateway.get_user_roles(user.id)
        permissions = await self.gateway.get_user_permissions(user.id)
        return AuthResult(user=user, roles=roles, permissions=permissions)
