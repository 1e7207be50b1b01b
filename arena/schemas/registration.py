"""
Registration Schemas (Pydantic)
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Indian mobile number, no country code
PHONE_PATTERN = r'^[6-9]\d{9}$'


class PlayerIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=2, max_length=50)
    player_id: str = Field(..., min_length=3, max_length=30)


class TeamLeaderIn(PlayerIn):
    phone: str = Field(..., pattern=PHONE_PATTERN)


class TeamMemberIn(PlayerIn):
    is_substitute: bool = False


class TeamIn(BaseModel):
    """Team payload for submission and admin edits."""
    model_config = ConfigDict(str_strip_whitespace=True)

    team_name: str = Field(..., min_length=3, max_length=50)
    team_leader: TeamLeaderIn
    team_members: List[TeamMemberIn]
    contact_number: str = Field(..., pattern=PHONE_PATTERN)

    @field_validator('team_name')
    @classmethod
    def sanitize_team_name(cls, v):
        """Basic XSS prevention."""
        return v.replace('<', '').replace('>', '').strip()

    def player_ids(self) -> List[str]:
        return [self.team_leader.player_id] + [m.player_id for m in self.team_members]

    def substitutes(self) -> List[TeamMemberIn]:
        return [m for m in self.team_members if m.is_substitute]

    def members_as_json(self) -> List[dict]:
        return [m.model_dump() for m in self.team_members]


class SubmitRegistrationRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    team: TeamIn


class AdminActionRequest(BaseModel):
    admin_id: str = Field(..., min_length=1, max_length=64)
    override: bool = False


class RejectRequest(AdminActionRequest):
    reason: str = Field(..., min_length=5, max_length=200)


class CancelRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)


class UpdateTeamRequest(AdminActionRequest):
    team: TeamIn


class PinGroupRequest(AdminActionRequest):
    group: str = Field(..., pattern=r'^G[1-9][0-9]*$')


class AssignGroupsRequest(BaseModel):
    reset_pins: bool = False


class ImageResponse(BaseModel):
    id: int
    slot: str
    image_number: int
    url: str
    uploaded_at: Optional[str] = None


class RegistrationResponse(BaseModel):
    id: int
    tournament_id: int
    user_id: str
    status: str
    team_name: str
    team_leader: dict
    team_members: List[dict]
    contact_number: str
    group: Optional[str] = None
    group_pinned: bool = False
    verified_by: Optional[str] = None
    verified_at: Optional[str] = None
    rejection_reason: Optional[str] = None
    registered_at: Optional[str] = None
    image_count: int = 0
    images: List[ImageResponse] = []
