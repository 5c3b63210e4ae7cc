# VPS Control Models
from vpsctl.models.session_token import SessionToken
from vpsctl.models.user import Permission, Role, User, role_permissions, user_roles

__all__ = [
    "Permission",
    "Role",
    "SessionToken",
    "User",
    "role_permissions",
    "user_roles",
]
