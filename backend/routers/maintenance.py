"""
Maintenance API endpoints.

    POST /api/maintenance/sessions/cleanup  - delete expired login sessions
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models import User
from auth.dependencies import require_permission
from services.session_cleanup import run_session_cleanup

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/maintenance", tags=["maintenance"])


@router.post("/sessions/cleanup")
async def cleanup_sessions(
    current_user: User = Depends(require_permission("system.settings")),
    db: AsyncSession = Depends(get_db),
):
    """
    Delete every session whose expiry has passed.

    Live sessions are never touched, so this is safe to run at any time.
    """
    logger.info(f"Session cleanup requested by {current_user.username}")
    deleted = await run_session_cleanup(db)
    return {"status": "ok", "deleted": deleted}
