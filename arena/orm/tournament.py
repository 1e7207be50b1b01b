"""
Tournament ORM model.

Status values are owned by the StatusTransitionEngine; current_participants
is owned by the ParticipantCounter. Nothing else writes either column.
"""
from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Index, Integer, String, Text
from arena.orm.base import BaseModel, iso


class GameType(str, Enum):
    BGMI = "bgmi"
    CS2 = "cs2"
    VALORANT = "valorant"
    FREEFIRE = "freefire"


class TournamentStatus(str, Enum):
    """Union of every status any game type may use."""
    UPCOMING = "upcoming"
    REGISTRATION_OPEN = "registration_open"
    REGISTRATION_CLOSED = "registration_closed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    INACTIVE = "inactive"


def _in_list(column: str, enum_cls) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


class Tournament(BaseModel):
    """
    A tournament and its denormalized participant counter.

    Attributes:
        game_type: Selects the GameTypePolicy
        status: Current lifecycle status (legal set depends on game_type)
        registration_deadline, start_date, end_date: Time window (unused for cs2)
        max_participants: Capacity ceiling on active registrations
        current_participants: Count of active registrations
        grouping_enabled, group_size: Group partition configuration
        server_ip, server_port: Game server probed for cs2 online status
    """
    __tablename__ = "tournaments"

    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    game_type = Column(String(20), nullable=False, index=True)
    status = Column(String(30), nullable=False, default=TournamentStatus.UPCOMING.value)

    registration_deadline = Column(DateTime, nullable=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)

    max_participants = Column(Integer, nullable=False)
    current_participants = Column(Integer, nullable=False, default=0)

    grouping_enabled = Column(Boolean, nullable=False, default=False)
    group_size = Column(Integer, nullable=False, default=20)

    server_ip = Column(String(64), nullable=True)
    server_port = Column(Integer, nullable=True)

    created_by = Column(String(64), nullable=True)

    __table_args__ = (
        CheckConstraint(_in_list("game_type", GameType), name="ck_tournament_game_type_valid"),
        CheckConstraint(_in_list("status", TournamentStatus), name="ck_tournament_status_valid"),
        CheckConstraint("max_participants >= 2", name="ck_tournament_capacity_min"),
        CheckConstraint("current_participants >= 0", name="ck_tournament_participants_non_negative"),
        CheckConstraint("group_size >= 5", name="ck_tournament_group_size_min"),
        Index("idx_tournament_status", "status"),
        Index("idx_tournament_game_status", "game_type", "status"),
    )

    @property
    def spots_remaining(self) -> int:
        return max(0, self.max_participants - (self.current_participants or 0))

    @property
    def is_full(self) -> bool:
        return (self.current_participants or 0) >= self.max_participants

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "game_type": self.game_type,
            "status": self.status,
            "registration_deadline": iso(self.registration_deadline),
            "start_date": iso(self.start_date),
            "end_date": iso(self.end_date),
            "max_participants": self.max_participants,
            "current_participants": self.current_participants,
            "spots_remaining": self.spots_remaining,
            "grouping_enabled": self.grouping_enabled,
            "group_size": self.group_size,
            "server_ip": self.server_ip,
            "server_port": self.server_port,
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
