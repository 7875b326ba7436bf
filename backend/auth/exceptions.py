"""
Domain exceptions for the authorization core and their HTTP mapping.

Store functions raise these instead of ``HTTPException`` so they can be
used outside a request (startup seeding, maintenance scripts, the identity
resolver). Routers either let them propagate to the handlers registered
by :func:`register_exception_handlers` or catch them where a different
outcome is wanted (the sync loop treats a conflict as a no-op).

Exception hierarchy:
    AuthError (base)
    ├── UserNotFoundError            - dangling or unknown user id
    ├── RoleNotFoundError            - unknown role id or name
    ├── RoleAssignmentConflictError  - (user, role) pair already assigned
    ├── DuplicateUserError           - username or email already taken
    ├── InvalidCredentialsError      - local login failed
    ├── TokenVerificationError       - ID token failed verification
    └── RoleSyncError                - strict role sync could not complete
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class AuthError(Exception):
    """Base exception for all authorization-core errors."""

    status_code = 500
    error_type = "auth_error"

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


class UserNotFoundError(AuthError):
    status_code = 404
    error_type = "user_not_found"

    def __init__(self, user_id: Optional[int] = None, detail: Optional[str] = None):
        self.user_id = user_id
        super().__init__(detail or f"User {user_id} not found")


class RoleNotFoundError(AuthError):
    status_code = 404
    error_type = "role_not_found"

    def __init__(self, role: object):
        self.role = role
        super().__init__(f"Role {role} not found")


class RoleAssignmentConflictError(AuthError):
    """
    Raised when a role is assigned to a user who already holds it.

    Callers that only care about the end state can treat this as a no-op.
    """

    status_code = 409
    error_type = "role_already_assigned"

    def __init__(self, user_id: int, role_id: int):
        self.user_id = user_id
        self.role_id = role_id
        super().__init__("Role already assigned to user")


class DuplicateUserError(AuthError):
    status_code = 409
    error_type = "duplicate_user"

    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(f"User with this {field} already exists")


class InvalidCredentialsError(AuthError):
    status_code = 401
    error_type = "invalid_credentials"

    def __init__(self):
        super().__init__("Invalid username or password")


class TokenVerificationError(AuthError):
    status_code = 401
    error_type = "invalid_token"


class RoleSyncError(AuthError):
    error_type = "role_sync_failed"


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map :class:`AuthError` subclasses to JSON responses.

    Every response has the shape ``{"detail": ..., "error_type": ...}``.
    """

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "error_type": exc.error_type},
        )
