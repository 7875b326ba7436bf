"""
User and role administration.

Every endpoint requires the ``admin`` or ``property_manager`` role. Granting
and revoking roles additionally requires ``roles.manage``, which only
``admin`` holds, so a property manager cannot promote anyone.

    GET    /api/users                        - list users with roles
    GET    /api/users/{id}                   - one user
    PUT    /api/users/{id}                   - update profile / status
    DELETE /api/users/{id}                   - hard delete
    POST   /api/users/{id}/roles             - grant a role (409 if held)
    DELETE /api/users/{id}/roles/{role_id}   - revoke a role (idempotent)
    GET    /api/roles                        - list role definitions
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models import User
from schemas import RoleAssignRequest, RoleResponse, UserResponse, UserUpdate
from auth import role_store, user_store
from auth.dependencies import require_permission, require_user_admin
from utils.audit import audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])
roles_router = APIRouter(prefix="/api/roles", tags=["roles"])


@router.get("", response_model=list[UserResponse])
async def list_users(
    current_user: User = Depends(require_user_admin),
    db: AsyncSession = Depends(get_db),
):
    users = await user_store.list_users(db)
    return [UserResponse.model_validate(u) for u in users]


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    current_user: User = Depends(require_user_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await user_store.get_user_by_id(db, user_id)
    return UserResponse.model_validate(user)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    body: UserUpdate,
    current_user: User = Depends(require_user_admin),
    db: AsyncSession = Depends(get_db),
):
    """Update a user's profile fields or status."""
    # phone_number is the only nullable field; null elsewhere means "leave as is"
    changes = {
        k: v
        for k, v in body.model_dump(exclude_unset=True).items()
        if v is not None or k == "phone_number"
    }
    actor = current_user.username

    user = await user_store.update_user(db, user_id, **changes)
    audit.log_user_change("UPDATE_USER", actor, user_id, changes)
    return UserResponse.model_validate(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: int,
    current_user: User = Depends(require_user_admin),
    db: AsyncSession = Depends(get_db),
):
    if user_id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete your own account",
        )
    actor = current_user.username

    await user_store.delete_user(db, user_id)
    audit.log_user_change("DELETE_USER", actor, user_id)


@router.post(
    "/{user_id}/roles",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_role(
    user_id: int,
    body: RoleAssignRequest,
    current_user: User = Depends(require_permission("roles.manage")),
    db: AsyncSession = Depends(get_db),
):
    """
    Grant a role. A duplicate grant answers 409 and leaves the user's
    roles unchanged.
    """
    actor, actor_id = current_user.username, current_user.id

    await role_store.assign_role(db, user_id, body.role_id, assigned_by=actor_id)
    audit.log_role_change("ASSIGN_ROLE", actor, user_id, body.role_id)

    user = await user_store.get_user_by_id(db, user_id)
    return UserResponse.model_validate(user)


@router.delete("/{user_id}/roles/{role_id}", response_model=UserResponse)
async def remove_role(
    user_id: int,
    role_id: int,
    current_user: User = Depends(require_permission("roles.manage")),
    db: AsyncSession = Depends(get_db),
):
    """Revoke a role. Revoking a role the user does not hold succeeds."""
    actor = current_user.username

    user = await user_store.get_user_by_id(db, user_id)
    await role_store.get_role_by_id(db, role_id)
    await role_store.remove_role(db, user.id, role_id)
    audit.log_role_change("REMOVE_ROLE", actor, user_id, role_id)

    user = await user_store.get_user_by_id(db, user_id)
    return UserResponse.model_validate(user)


@roles_router.get("", response_model=list[RoleResponse])
async def list_roles(
    current_user: User = Depends(require_user_admin),
    db: AsyncSession = Depends(get_db),
):
    roles = await role_store.get_all_roles(db)
    return [RoleResponse.model_validate(r) for r in roles]
