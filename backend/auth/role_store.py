"""
Persistent role definitions and user-role assignments.

Every function reads and writes the relational store directly; there is no
caching layer, so a caller always sees its own committed writes (the
identity resolver removes and re-assigns roles on each login and must read
the result back immediately).

Write functions commit by default. Pass ``commit=False`` to stage the
change in the caller's transaction instead (used by the strict role sync).
"""

import logging
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models import Role, User, UserRole

from .exceptions import RoleAssignmentConflictError, RoleNotFoundError, UserNotFoundError
from .permissions import ROLE_DEFINITIONS

logger = logging.getLogger(__name__)


async def get_role_by_name(db: AsyncSession, name: str) -> Role:
    result = await db.execute(select(Role).where(Role.name == name))
    role = result.scalar_one_or_none()
    if role is None:
        raise RoleNotFoundError(name)
    return role


async def get_role_by_id(db: AsyncSession, role_id: int) -> Role:
    role = await db.get(Role, role_id)
    if role is None:
        raise RoleNotFoundError(role_id)
    return role


async def get_all_roles(db: AsyncSession) -> list[Role]:
    result = await db.execute(select(Role).order_by(Role.name))
    return list(result.scalars().all())


async def get_user_roles(db: AsyncSession, user_id: int) -> list[Role]:
    """Return the roles assigned to a user, ordered by role name."""
    result = await db.execute(
        select(Role)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user_id)
        .order_by(Role.name)
    )
    return list(result.scalars().all())


async def _assignment_exists(db: AsyncSession, user_id: int, role_id: int) -> bool:
    result = await db.execute(
        select(UserRole.id).where(
            UserRole.user_id == user_id,
            UserRole.role_id == role_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def assign_role(
    db: AsyncSession,
    user_id: int,
    role_id: int,
    assigned_by: Optional[int] = None,
    commit: bool = True,
) -> UserRole:
    """
    Assign a role to a user.

    Raises:
        UserNotFoundError: ``user_id`` does not exist.
        RoleNotFoundError: ``role_id`` does not exist.
        RoleAssignmentConflictError: the user already holds the role. The
            stored state is left unchanged.
    """
    if await db.get(User, user_id) is None:
        raise UserNotFoundError(user_id)
    if await db.get(Role, role_id) is None:
        raise RoleNotFoundError(role_id)

    if await _assignment_exists(db, user_id, role_id):
        raise RoleAssignmentConflictError(user_id, role_id)

    assignment = UserRole(user_id=user_id, role_id=role_id, assigned_by=assigned_by)
    db.add(assignment)
    try:
        if commit:
            await db.commit()
        else:
            await db.flush()
    except IntegrityError:
        # Lost a race against a concurrent assignment of the same pair
        await db.rollback()
        raise RoleAssignmentConflictError(user_id, role_id)

    logger.debug(f"Assigned role {role_id} to user {user_id} (by={assigned_by})")
    return assignment


async def remove_role(
    db: AsyncSession,
    user_id: int,
    role_id: int,
    commit: bool = True,
) -> None:
    """Remove a role from a user. Removing an absent assignment is not an error."""
    result = await db.execute(
        delete(UserRole).where(
            UserRole.user_id == user_id,
            UserRole.role_id == role_id,
        )
    )
    if commit:
        await db.commit()
    if result.rowcount:
        logger.debug(f"Removed role {role_id} from user {user_id}")


async def seed_roles(db: AsyncSession) -> int:
    """
    Insert any missing system role. Existing rows are left untouched.

    Returns:
        Number of roles created.
    """
    result = await db.execute(select(Role.name))
    existing = set(result.scalars().all())

    created = 0
    for definition in ROLE_DEFINITIONS:
        if definition["name"] in existing:
            continue
        db.add(
            Role(
                name=definition["name"],
                display_name=definition["display_name"],
                description=definition["description"],
                permissions=list(definition["permissions"]),
            )
        )
        created += 1

    if created:
        await db.commit()
        logger.info(f"Seeded {created} system role(s)")
    return created
