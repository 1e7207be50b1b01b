"""
Team registration ORM models.

A registration belongs to one user per tournament and carries the team roster
plus up to eight verification images, one per (slot, image_number) pair.
"""
from enum import Enum

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
)
from sqlalchemy.orm import relationship

from arena.core.clock import utcnow
from arena.orm.base import BaseModel, JSONType, iso


class RegistrationStatus(str, Enum):
    PENDING = "pending"
    IMAGES_UPLOADED = "images_uploaded"
    VERIFIED = "verified"
    REJECTED = "rejected"


class ImageSlot(str, Enum):
    LEADER = "leader"
    MEMBER1 = "member1"
    MEMBER2 = "member2"
    MEMBER3 = "member3"


IMAGE_NUMBERS = (1, 2)
REQUIRED_IMAGE_COUNT = len(ImageSlot) * len(IMAGE_NUMBERS)

# Statuses counted toward capacity and grouping
ACTIVE_STATUSES = frozenset({
    RegistrationStatus.PENDING.value,
    RegistrationStatus.IMAGES_UPLOADED.value,
    RegistrationStatus.VERIFIED.value,
})


class Registration(BaseModel):
    """
    Team registration.

    Attributes:
        tournament_id, user_id: Unique pair
        status: Verification state
        team_members: JSON list of {name, player_id, is_substitute}
        contact_number: Notification recipient
        group_label: "G<n>" when grouping is enabled
        group_pinned: Label was set manually and survives recompute
        registered_at: Ordering key for group assignment
    """
    __tablename__ = "registrations"

    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id = Column(String(64), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=RegistrationStatus.PENDING.value)

    team_name = Column(String(50), nullable=False)
    leader_name = Column(String(50), nullable=False)
    leader_player_id = Column(String(30), nullable=False)
    leader_phone = Column(String(15), nullable=False)
    team_members = Column(JSONType, nullable=False, default=list)
    contact_number = Column(String(15), nullable=False)

    group_label = Column(String(10), nullable=True)
    group_pinned = Column(Boolean, nullable=False, default=False)

    verified_by = Column(String(64), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    rejection_reason = Column(String(200), nullable=True)

    registered_at = Column(DateTime, nullable=False, default=utcnow)

    images = relationship(
        "RegistrationImage",
        back_populates="registration",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="RegistrationImage.id",
    )

    __table_args__ = (
        UniqueConstraint("tournament_id", "user_id", name="uq_registration_tournament_user"),
        CheckConstraint(
            "status IN ('pending', 'images_uploaded', 'verified', 'rejected')",
            name="ck_registration_status_valid"
        ),
        Index("idx_registration_tournament_status", "tournament_id", "status"),
        Index("idx_registration_tournament_order", "tournament_id", "registered_at", "id"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def image_count(self) -> int:
        return len(self.images)

    def find_image(self, slot: str, image_number: int):
        for image in self.images:
            if image.slot == slot and image.image_number == image_number:
                return image
        return None

    def to_dict(self, include_images: bool = True):
        """Convert to dictionary."""
        data = {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "user_id": self.user_id,
            "status": self.status,
            "team_name": self.team_name,
            "team_leader": {
                "name": self.leader_name,
                "player_id": self.leader_player_id,
                "phone": self.leader_phone,
            },
            "team_members": list(self.team_members or []),
            "contact_number": self.contact_number,
            "group": self.group_label,
            "group_pinned": self.group_pinned,
            "verified_by": self.verified_by,
            "verified_at": iso(self.verified_at),
            "rejection_reason": self.rejection_reason,
            "registered_at": iso(self.registered_at),
            "image_count": self.image_count,
        }
        if include_images:
            data["images"] = [image.to_dict() for image in self.images]
        return data


class RegistrationImage(BaseModel):
    """One verification screenshot, keyed by (slot, image_number)."""
    __tablename__ = "registration_images"

    registration_id = Column(
        Integer,
        ForeignKey("registrations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    slot = Column(String(10), nullable=False)
    image_number = Column(Integer, nullable=False)
    url = Column(String(500), nullable=False)
    blob_ref = Column(String(255), nullable=False)
    uploaded_at = Column(DateTime, nullable=False, default=utcnow)

    registration = relationship("Registration", back_populates="images")

    __table_args__ = (
        UniqueConstraint("registration_id", "slot", "image_number", name="uq_image_slot_number"),
        CheckConstraint(
            "slot IN ('leader', 'member1', 'member2', 'member3')",
            name="ck_image_slot_valid"
        ),
        CheckConstraint("image_number IN (1, 2)", name="ck_image_number_valid"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "slot": self.slot,
            "image_number": self.image_number,
            "url": self.url,
            "uploaded_at": iso(self.uploaded_at),
        }
