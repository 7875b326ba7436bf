"""
Server-side sessions for the session-cookie login path.

A session is an opaque random token bound to a user until ``expires_at``.
Expiry is enforced in the lookup query itself, so a row that has outlived
its ``expires_at`` never resolves even before the cleanup sweep deletes it.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models import UserSession

logger = logging.getLogger(__name__)


def generate_secure_token() -> str:
    """Return a URL-safe token carrying 32 bytes of randomness."""
    return secrets.token_urlsafe(32)


def get_client_ip(request: Request) -> str:
    """
    Best-effort client address: first ``X-Forwarded-For`` hop, then
    ``X-Real-IP``, then the socket peer.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else ""


async def create_user_session(
    db: AsyncSession,
    user_id: int,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    ttl: Optional[timedelta] = None,
) -> UserSession:
    """Create and persist a new session for ``user_id``."""
    if ttl is None:
        ttl = timedelta(hours=settings.SESSION_TTL_HOURS)

    session = UserSession(
        user_id=user_id,
        session_token=generate_secure_token(),
        ip_address=ip_address or None,
        user_agent=user_agent or None,
        expires_at=datetime.now(timezone.utc) + ttl,
    )
    db.add(session)
    await db.commit()
    logger.debug(f"Created session for user {user_id} (ttl={ttl})")
    return session


async def get_user_session(db: AsyncSession, token: str) -> Optional[UserSession]:
    """Return the live session for ``token``, or ``None`` if missing or expired."""
    if not token:
        return None
    result = await db.execute(
        select(UserSession).where(
            UserSession.session_token == token,
            UserSession.expires_at > datetime.now(timezone.utc),
        )
    )
    return result.scalar_one_or_none()


async def delete_user_session(db: AsyncSession, token: str) -> None:
    await db.execute(delete(UserSession).where(UserSession.session_token == token))
    await db.commit()


async def cleanup_expired_sessions(db: AsyncSession) -> int:
    """
    Delete every session whose expiry has passed.

    Only already-dead rows are touched, so this can run alongside live
    traffic without extra locking.

    Returns:
        Number of sessions deleted.
    """
    result = await db.execute(
        delete(UserSession).where(UserSession.expires_at <= datetime.now(timezone.utc))
    )
    await db.commit()
    return result.rowcount or 0
