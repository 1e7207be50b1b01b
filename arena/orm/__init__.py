"""
ORM models. Importing this package registers every table on Base.metadata.
"""
from arena.orm.base import Base, BaseModel
from arena.orm.tournament import GameType, Tournament, TournamentStatus
from arena.orm.registration import (
    ACTIVE_STATUSES,
    IMAGE_NUMBERS,
    REQUIRED_IMAGE_COUNT,
    ImageSlot,
    Registration,
    RegistrationImage,
    RegistrationStatus,
)
from arena.orm.notification import EventType, MessageStatus, NotificationMessage

__all__ = [
    "Base",
    "BaseModel",
    "GameType",
    "Tournament",
    "TournamentStatus",
    "ACTIVE_STATUSES",
    "IMAGE_NUMBERS",
    "REQUIRED_IMAGE_COUNT",
    "ImageSlot",
    "Registration",
    "RegistrationImage",
    "RegistrationStatus",
    "EventType",
    "MessageStatus",
    "NotificationMessage",
]
