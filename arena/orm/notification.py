"""
Notification ledger ORM model.

Each lifecycle event becomes one message row; delivery attempts and
transport callbacks only ever touch this table, never the registration.
"""
from enum import Enum

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text

from arena.core.clock import utcnow
from arena.orm.base import BaseModel, JSONType, iso


class EventType(str, Enum):
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    REJECTED = "rejected"
    TOURNAMENT_UPDATE = "tournament_update"


class MessageStatus(str, Enum):
    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class NotificationMessage(BaseModel):
    __tablename__ = "notification_messages"

    registration_id = Column(
        Integer,
        ForeignKey("registrations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    event_type = Column(String(30), nullable=False)
    template_name = Column(String(64), nullable=False)
    recipient = Column(String(20), nullable=False)
    params = Column(JSONType, nullable=False, default=dict)

    status = Column(String(20), nullable=False, default=MessageStatus.QUEUED.value)
    delivery_id = Column(String(128), nullable=True, index=True)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)

    queued_at = Column(DateTime, nullable=False, default=utcnow)
    next_attempt_at = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    read_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'sent', 'delivered', 'read', 'failed')",
            name="ck_message_status_valid"
        ),
        CheckConstraint("retry_count >= 0", name="ck_message_retry_non_negative"),
        Index("idx_message_status_next_attempt", "status", "next_attempt_at"),
    )

    @property
    def can_retry(self) -> bool:
        return self.status == MessageStatus.FAILED.value and self.retry_count < self.max_retries

    def mark_sent(self, delivery_id: str, now) -> None:
        self.status = MessageStatus.SENT.value
        self.delivery_id = delivery_id
        self.sent_at = now
        self.error_message = None
        self.next_attempt_at = None

    def mark_failed(self, error: str, now, retry_at=None) -> None:
        self.status = MessageStatus.FAILED.value
        self.error_message = error
        self.failed_at = now
        self.retry_count = (self.retry_count or 0) + 1
        self.next_attempt_at = retry_at if self.retry_count < self.max_retries else None

    def mark_delivered(self, now) -> None:
        self.status = MessageStatus.DELIVERED.value
        self.delivered_at = now

    def mark_read(self, now) -> None:
        self.status = MessageStatus.READ.value
        self.read_at = now

    def to_dict(self):
        return {
            "id": self.id,
            "registration_id": self.registration_id,
            "event_type": self.event_type,
            "template_name": self.template_name,
            "recipient": self.recipient,
            "params": dict(self.params or {}),
            "status": self.status,
            "delivery_id": self.delivery_id,
            "error_message": self.error_message,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "can_retry": self.can_retry,
            "queued_at": iso(self.queued_at),
            "next_attempt_at": iso(self.next_attempt_at),
            "sent_at": iso(self.sent_at),
            "delivered_at": iso(self.delivered_at),
            "read_at": iso(self.read_at),
            "failed_at": iso(self.failed_at),
        }
