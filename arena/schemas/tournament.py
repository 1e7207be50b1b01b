"""
Tournament Schemas (Pydantic)
"""
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class TournamentCreate(BaseModel):
    """Organizer input for a new tournament."""
    name: str = Field(..., min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    game_type: str
    registration_deadline: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    max_participants: int = Field(..., ge=2, le=1000)
    grouping_enabled: bool = False
    group_size: Optional[int] = Field(default=None, ge=5)
    server_ip: Optional[str] = Field(default=None, max_length=64)
    server_port: Optional[int] = Field(default=None, ge=1, le=65535)
    status: Optional[str] = None
    created_by: Optional[str] = None

    @field_validator("registration_deadline", "start_date", "end_date")
    @classmethod
    def to_naive_utc(cls, v):
        """Columns store naive UTC."""
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


class SetStatusRequest(BaseModel):
    status: str
    admin_id: str = Field(..., min_length=1, max_length=64)


class GroupingRequest(BaseModel):
    enabled: bool
    group_size: Optional[int] = Field(default=None, ge=5)


class TournamentResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    game_type: str
    status: str
    registration_deadline: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    max_participants: int
    current_participants: int
    spots_remaining: int
    grouping_enabled: bool
    group_size: int
    server_ip: Optional[str] = None
    server_port: Optional[int] = None
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
