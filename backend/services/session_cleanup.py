"""
Out-of-band deletion of expired login sessions.

Expired sessions already fail lookup, so this only reclaims storage. It is
exposed through the maintenance endpoint and ``scripts/cleanup_sessions.py``.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from auth.session_service import cleanup_expired_sessions
from utils.audit import audit
from utils.logging_utils import LogTimer

logger = logging.getLogger(__name__)


async def run_session_cleanup(db: AsyncSession) -> int:
    """
    Delete every session past its expiry.

    Returns:
        Number of sessions deleted.
    """
    with LogTimer(logger, "Expired session cleanup") as timer:
        deleted = await cleanup_expired_sessions(db)
        timer.set_record_count(deleted)

    audit.log_session_cleanup(deleted)
    return deleted
