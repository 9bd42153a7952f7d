from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.core.roles import TeamRole


class TeamCreate(BaseModel):
    team_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class TeamUpdate(BaseModel):
    team_name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None


class TeamOut(BaseModel):
    id: str
    team_name: str
    description: Optional[str] = None
    owner_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TeamMemberOut(BaseModel):
    team_id: str
    user_id: str
    role: TeamRole
    email: Optional[str] = None
    joined_at: Optional[datetime] = None
    invited_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TeamInvitationOut(BaseModel):
    id: str
    team_id: str
    email: str
    role: TeamRole
    invited_by: str
    expires_at: datetime
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class InvitationDetails(TeamInvitationOut):
    team_name: Optional[str] = None


class UserTeam(BaseModel):
    team_id: str
    team_name: str
    role: TeamRole
    is_owner: bool
    member_count: int


class UserRoleCheck(BaseModel):
    has_permission: bool
    user_role: Optional[TeamRole] = None
    is_member: bool


class InviteRequest(BaseModel):
    email: EmailStr
    role: TeamRole = TeamRole.VIEWER


class AcceptInvitationRequest(BaseModel):
    token: str = Field(..., min_length=1)


class RoleUpdateRequest(BaseModel):
    role: TeamRole


class TeamDetail(BaseModel):
    team: TeamOut
    members: List[TeamMemberOut]
    invitations: List[TeamInvitationOut]
    user_role: Optional[TeamRole] = None
