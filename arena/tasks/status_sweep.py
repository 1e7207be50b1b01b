"""
arena/tasks/status_sweep.py
Periodic tournament status sweep.
"""
import asyncio
import logging
from typing import Any, Dict

from sqlalchemy.ext.asyncio import async_sessionmaker

from arena.services.status_engine import StatusTransitionEngine

logger = logging.getLogger(__name__)


async def run_sweep_once(session_factory: async_sessionmaker, engine: StatusTransitionEngine) -> Dict[str, Any]:
    """Run a single sweep cycle."""
    async with session_factory() as db:
        try:
            return await engine.sweep_statuses(db)
        except Exception as e:
            await db.rollback()
            logger.error(f"Status sweep failed: {str(e)}")
            return {"success": False, "updated_count": 0, "error": str(e)}


async def sweep_loop(session_factory: async_sessionmaker, engine: StatusTransitionEngine, interval_seconds: int = 600):
    """
    Background sweep loop.
    Runs every interval_seconds (default 10 minutes).
    """
    logger.info(f"Starting status sweep loop with interval {interval_seconds}s")

    while True:
        await run_sweep_once(session_factory, engine)
        await asyncio.sleep(interval_seconds)


def start_sweep_task(session_factory: async_sessionmaker, engine: StatusTransitionEngine, interval_seconds: int = 600):
    """Start the sweep as a background task."""
    return asyncio.create_task(sweep_loop(session_factory, engine, interval_seconds))
