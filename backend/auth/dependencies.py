"""
FastAPI dependencies for authentication and access decisions.

Usage in routers::

    from auth.dependencies import require_permission, require_any_role

    @router.get("/properties")
    async def list_properties(user: User = Depends(require_permission("properties.read"))):
        ...

    router = APIRouter(dependencies=[Depends(require_any_role("admin", "property_manager"))])

Guards stacked on one route must all pass. Alternatives ("any of these
roles") are expressed inside a single :func:`require_any_role` call.

Guards only read the principal built by :func:`get_principal`; they never
touch the store. A missing principal yields 401, an insufficient one 403.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from utils.audit import audit

from .authenticator import RequestAuthenticator, RequestPrincipal
from .identity_resolver import IdentityResolver
from .oidc_client import AuthClient

logger = logging.getLogger(__name__)


def get_auth_client(request: Request) -> Optional[AuthClient]:
    """The application's :class:`AuthClient`, or ``None`` without a provider."""
    return getattr(request.app.state, "auth_client", None)


def get_authenticator(request: Request) -> RequestAuthenticator:
    return request.app.state.authenticator


def get_identity_resolver(
    authenticator: RequestAuthenticator = Depends(get_authenticator),
) -> IdentityResolver:
    return authenticator.resolver


async def get_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
    authenticator: RequestAuthenticator = Depends(get_authenticator),
) -> RequestPrincipal:
    """
    Authenticate the request once.

    FastAPI caches dependency results per request, so every guard on the
    route shares the same principal.
    """
    principal = await authenticator.authenticate(request, db)
    if principal.is_authenticated:
        audit.set_actor(principal.user.username)
    return principal


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden() -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


def require_authenticated():
    """Dependency factory: any authenticated user."""

    async def _check_authenticated(
        principal: RequestPrincipal = Depends(get_principal),
    ) -> User:
        if not principal.is_authenticated:
            raise _unauthorized()
        return principal.user

    return _check_authenticated


def require_permission(permission: str):
    """
    Dependency factory: the user must hold ``permission`` through any of
    its roles (wildcard grants included).

    Usage::

        @router.post("/maintenance/sessions/cleanup")
        async def cleanup(user: User = Depends(require_permission("system.settings"))):
            ...
    """

    async def _check_permission(
        principal: RequestPrincipal = Depends(get_principal),
    ) -> User:
        if not principal.is_authenticated:
            raise _unauthorized()
        user = principal.user
        if not user.has_permission(permission):
            logger.info(f"User {user.username} denied: missing permission {permission}")
            raise _forbidden()
        return user

    return _check_permission


def require_role(role: str):
    """Dependency factory: the user must hold exactly ``role``."""

    async def _check_role(
        principal: RequestPrincipal = Depends(get_principal),
    ) -> User:
        if not principal.is_authenticated:
            raise _unauthorized()
        user = principal.user
        if not user.has_role(role):
            logger.info(f"User {user.username} denied: missing role {role}")
            raise _forbidden()
        return user

    return _check_role


def require_any_role(*roles: str):
    """
    Dependency factory: the user must hold at least one of ``roles``.

    Args:
        *roles: Application role names (``"admin"``, ``"property_manager"``,
            ``"tenant"``, ``"viewer"``).
    """
    if not roles:
        raise ValueError("require_any_role needs at least one role")

    async def _check_any_role(
        principal: RequestPrincipal = Depends(get_principal),
    ) -> User:
        if not principal.is_authenticated:
            raise _unauthorized()
        user = principal.user
        if not any(user.has_role(role) for role in roles):
            logger.info(
                f"User {user.username} denied: needs one of {', '.join(roles)}"
            )
            raise _forbidden()
        return user

    return _check_any_role


# ── Convenience shortcuts ──────────────────────────────────────────────
require_user_admin = require_any_role("admin", "property_manager")
