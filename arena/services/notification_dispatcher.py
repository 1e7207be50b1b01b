"""
Notification Dispatcher

Consumes lifecycle events and delivers them through a NotificationTransport.

Every event becomes a row in the notification ledger first; delivery is
attempted afterwards (immediately in a background task, or by the periodic
retry loop). A failed delivery is recorded on the message with exponential
backoff and never reaches back into registration state.

Message status flow:
queued → sent → delivered → read
queued | failed → failed (retry_count += 1, up to max_retries)
"""
import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from arena.config.settings import Settings
from arena.core.clock import Clock, SystemClock
from arena.errors import ErrorCode, NotFound
from arena.orm.notification import MessageStatus, NotificationMessage
from arena.services.events import EventSink, LifecycleEvent
from arena.services.transports import NotificationTransport

logger = logging.getLogger(__name__)

# Template body parameter order per event type
PARAMETER_ORDER = {
    "submitted": ("team_name", "tournament_name"),
    "verified": ("team_name", "tournament_name"),
    "rejected": ("team_name", "tournament_name", "reason"),
    "tournament_update": ("team_name", "tournament_name"),
}


def template_parameters(event_type: str, params: Dict[str, Any]) -> List[str]:
    keys = PARAMETER_ORDER.get(event_type, tuple(sorted(params)))
    return [str(params[k]) for k in keys if params.get(k) is not None]


class NotificationDispatcher(EventSink):

    def __init__(
        self,
        session_factory: async_sessionmaker,
        transport: NotificationTransport,
        settings: Settings,
        clock: Optional[Clock] = None
    ):
        self.session_factory = session_factory
        self.transport = transport
        self.settings = settings
        self.clock = clock or SystemClock()
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    async def publish(self, event: LifecycleEvent) -> Optional[int]:
        """Record the event in the ledger and schedule delivery. Never raises."""
        if not self.settings.flags.is_enabled("FEATURE_NOTIFICATIONS"):
            return None
        try:
            message_id = await self.enqueue(event)
        except SQLAlchemyError as e:
            logger.error(f"[NOTIFY] Could not queue {event.event_type} for registration "
                         f"{event.registration_id}: {e}")
            return None

        if self.settings.flags.is_enabled("FEATURE_IMMEDIATE_DELIVERY"):
            self._schedule(message_id)
        return message_id

    async def enqueue(self, event: LifecycleEvent) -> int:
        now = self.clock.now()
        async with self.session_factory() as db:
            message = NotificationMessage(
                registration_id=event.registration_id,
                event_type=event.event_type,
                template_name=self.settings.template_for(event.event_type),
                recipient=event.recipient,
                params=event.params(),
                status=MessageStatus.QUEUED.value,
                max_retries=self.settings.notification_max_retries,
                queued_at=now,
                next_attempt_at=now,
            )
            db.add(message)
            await db.commit()
            logger.info(f"[NOTIFY] Queued {event.event_type} message {message.id} "
                        f"for registration {event.registration_id}")
            return message.id

    def _schedule(self, message_id: int) -> None:
        task = asyncio.create_task(self.deliver(message_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _retry_at(self, message: NotificationMessage):
        delay = self.settings.notification_backoff_seconds * (2 ** (message.retry_count or 0))
        return self.clock.now() + timedelta(seconds=delay)

    async def deliver(self, message_id: int) -> bool:
        """Attempt one delivery. Returns True if the transport accepted it."""
        async with self.session_factory() as db:
            message = await db.get(NotificationMessage, message_id, with_for_update=True)
            if message is None:
                logger.warning(f"[NOTIFY] Message {message_id} vanished before delivery")
                return False
            if message.status == MessageStatus.FAILED.value and not message.can_retry:
                return False
            if message.status not in (MessageStatus.QUEUED.value, MessageStatus.FAILED.value):
                # Already handed to the transport by another worker
                return True

            params = template_parameters(message.event_type, message.params or {})
            try:
                result = await self.transport.send(message.template_name, message.recipient, params)
            except Exception as e:
                logger.exception(f"[NOTIFY] Transport raised for message {message.id}")
                error, success, delivery_id = str(e), False, None
            else:
                error, success, delivery_id = result.error, result.success, result.delivery_id

            if success:
                message.mark_sent(delivery_id, self.clock.now())
                logger.info(f"[NOTIFY] Sent message {message.id} ({message.event_type}) id={delivery_id}")
            else:
                message.mark_failed(error or "unknown error", self.clock.now(), self._retry_at(message))
                logger.warning(
                    f"[NOTIFY] Message {message.id} failed "
                    f"(attempt {message.retry_count}/{message.max_retries}): {error}"
                )
            await db.commit()
            return success

    async def process_queued(self, batch_size: Optional[int] = None) -> Dict[str, int]:
        """
        Deliver queued messages and retry failed ones whose backoff elapsed.
        """
        batch_size = batch_size or self.settings.notification_batch_size
        now = self.clock.now()
        async with self.session_factory() as db:
            result = await db.execute(
                select(NotificationMessage.id)
                .where(
                    or_(
                        NotificationMessage.status == MessageStatus.QUEUED.value,
                        (NotificationMessage.status == MessageStatus.FAILED.value)
                        & (NotificationMessage.retry_count < NotificationMessage.max_retries)
                        & (NotificationMessage.next_attempt_at <= now),
                    )
                )
                .order_by(NotificationMessage.queued_at.asc(), NotificationMessage.id.asc())
                .limit(batch_size)
            )
            message_ids = list(result.scalars().all())

        processed = failed = 0
        for message_id in message_ids:
            if await self.deliver(message_id):
                processed += 1
            else:
                failed += 1

        if message_ids:
            logger.info(f"[NOTIFY] Batch done: {processed} sent, {failed} failed")
        return {"processed": processed, "failed": failed}

    # ------------------------------------------------------------------
    # Transport status callbacks
    # ------------------------------------------------------------------

    async def _mark_by_delivery_id(self, delivery_id: str, new_status: str) -> NotificationMessage:
        async with self.session_factory() as db:
            result = await db.execute(
                select(NotificationMessage).where(NotificationMessage.delivery_id == delivery_id)
            )
            message = result.scalars().first()
            if message is None:
                raise NotFound("Message", delivery_id, code=ErrorCode.MESSAGE_NOT_FOUND)
            if new_status == MessageStatus.DELIVERED.value:
                message.mark_delivered(self.clock.now())
            else:
                message.mark_read(self.clock.now())
            await db.commit()
            return message

    async def mark_delivered(self, delivery_id: str) -> NotificationMessage:
        return await self._mark_by_delivery_id(delivery_id, MessageStatus.DELIVERED.value)

    async def mark_read(self, delivery_id: str) -> NotificationMessage:
        return await self._mark_by_delivery_id(delivery_id, MessageStatus.READ.value)

    async def list_messages(
        self,
        registration_id: Optional[int] = None,
        status: Optional[str] = None,
        limit: int = 50
    ) -> List[NotificationMessage]:
        async with self.session_factory() as db:
            query = select(NotificationMessage).order_by(NotificationMessage.id.desc()).limit(limit)
            if registration_id is not None:
                query = query.where(NotificationMessage.registration_id == registration_id)
            if status:
                query = query.where(NotificationMessage.status == status)
            result = await db.execute(query)
            return list(result.scalars().all())
