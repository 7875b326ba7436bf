#!/usr/bin/env python3
"""
Expired Session Cleanup
=======================

Deletes login sessions whose expiry has passed. Intended for cron or a
systemd timer; safe to run alongside the live application.

Usage:
    python scripts/cleanup_sessions.py            # delete expired sessions
    python scripts/cleanup_sessions.py --verbose  # with debug logging

Requirements:
    Run from the backend/ directory (or set PYTHONPATH).
"""

import argparse
import asyncio
import sys
from pathlib import Path

# ── Ensure we can import project modules ────────────────────────────
SCRIPT_DIR = Path(__file__).resolve().parent
BACKEND_DIR = SCRIPT_DIR.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from database import AsyncSessionLocal, close_db, init_db  # noqa: E402
from services.session_cleanup import run_session_cleanup  # noqa: E402
from utils.logging_utils import get_logger, setup_logging  # noqa: E402

logger = get_logger("cleanup_sessions")


async def _run() -> int:
    await init_db()
    try:
        async with AsyncSessionLocal() as db:
            return await run_session_cleanup(db)
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(
        description="PMaaS: delete expired login sessions",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    setup_logging(level="DEBUG" if args.verbose else "INFO")

    deleted = asyncio.run(_run())
    print(f"Deleted {deleted} expired session(s)")


if __name__ == "__main__":
    main()
