"""
arena/tasks/notification_retry.py
Periodic delivery of queued and retryable notification messages.
"""
import asyncio
import logging
from typing import Dict

from arena.services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


async def run_delivery_once(dispatcher: NotificationDispatcher) -> Dict[str, int]:
    try:
        return await dispatcher.process_queued()
    except Exception as e:
        logger.error(f"Notification batch failed: {str(e)}")
        return {"processed": 0, "failed": 0}


async def delivery_loop(dispatcher: NotificationDispatcher, interval_seconds: int = 60):
    logger.info(f"Starting notification delivery loop with interval {interval_seconds}s")

    while True:
        await run_delivery_once(dispatcher)
        await asyncio.sleep(interval_seconds)


def start_delivery_task(dispatcher: NotificationDispatcher, interval_seconds: int = 60):
    return asyncio.create_task(delivery_loop(dispatcher, interval_seconds))
