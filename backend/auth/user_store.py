"""
User persistence used by the identity resolver, the authenticator and the
user management endpoints.

Lookups that feed authorization decisions use ``populate_existing`` so a
user already in the session's identity map is refreshed together with its
roles instead of being returned with a stale role list.
"""

import logging
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from models import User, UserRole, UserSession

from .exceptions import DuplicateUserError, UserNotFoundError

logger = logging.getLogger(__name__)

# Columns an update is allowed to touch
_UPDATABLE_FIELDS = {
    "username",
    "email",
    "first_name",
    "last_name",
    "phone_number",
    "email_verified",
    "status",
    "local_password_hash",
    "identity_fingerprint",
    "last_login_at",
}


async def _get_one(db: AsyncSession, *criteria) -> Optional[User]:
    result = await db.execute(
        select(User)
        .options(selectinload(User.roles))
        .where(*criteria)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_user_by_id(db: AsyncSession, user_id: int) -> User:
    user = await _get_one(db, User.id == user_id)
    if user is None:
        raise UserNotFoundError(user_id)
    return user


async def get_user_by_external_id(db: AsyncSession, external_id: str) -> Optional[User]:
    return await _get_one(db, User.external_id == external_id)


async def get_user_by_username(db: AsyncSession, username: str) -> Optional[User]:
    return await _get_one(db, User.username == username)


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    return await _get_one(db, User.email == email)


async def list_users(db: AsyncSession) -> list[User]:
    result = await db.execute(
        select(User).options(selectinload(User.roles)).order_by(User.created_at.desc(), User.id.desc())
    )
    return list(result.scalars().all())


async def create_user(db: AsyncSession, **fields: Any) -> User:
    """
    Insert a new user.

    Raises:
        DuplicateUserError: username or email is already taken.
    """
    if fields.get("username") and await get_user_by_username(db, fields["username"]):
        raise DuplicateUserError("username", fields["username"])
    if fields.get("email") and await get_user_by_email(db, fields["email"]):
        raise DuplicateUserError("email", fields["email"])

    user = User(**fields)
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateUserError("username or email", fields.get("username", ""))

    logger.info(f"Created user {user.username} (id={user.id})")
    return await get_user_by_id(db, user.id)


async def update_user(db: AsyncSession, user_id: int, **changes: Any) -> User:
    """
    Apply ``changes`` to a user and return the refreshed row.

    Raises:
        UserNotFoundError: ``user_id`` does not exist.
        DuplicateUserError: the new username or email is already taken.
        ValueError: an unknown field was passed.
    """
    unknown = set(changes) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update user fields: {', '.join(sorted(unknown))}")

    user = await get_user_by_id(db, user_id)

    for field in ("username", "email"):
        value = changes.get(field)
        if value and value != getattr(user, field):
            other = await _get_one(db, getattr(User, field) == value)
            if other is not None and other.id != user_id:
                raise DuplicateUserError(field, value)

    for field, value in changes.items():
        setattr(user, field, value)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateUserError("username or email", changes.get("username", ""))

    return await get_user_by_id(db, user_id)


async def delete_user(db: AsyncSession, user_id: int) -> None:
    """Hard-delete a user. Its role assignments and sessions go with it."""
    user = await get_user_by_id(db, user_id)
    await db.execute(delete(UserRole).where(UserRole.user_id == user_id))
    await db.execute(delete(UserSession).where(UserSession.user_id == user_id))
    await db.execute(
        update(UserRole).where(UserRole.assigned_by == user_id).values(assigned_by=None)
    )
    await db.delete(user)
    await db.commit()
    logger.info(f"Deleted user id={user_id}")
