from .user import User
from .role import Role, UserRole
from .user_session import UserSession

__all__ = [
    "User",
    "Role",
    "UserRole",
    "UserSession",
]
