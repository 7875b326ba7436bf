from .auth import router as auth_router
from .users import router as users_router, roles_router
from .maintenance import router as maintenance_router

__all__ = [
    "auth_router",
    "users_router",
    "roles_router",
    "maintenance_router",
]
