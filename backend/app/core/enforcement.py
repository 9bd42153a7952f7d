from typing import Iterable, Optional

from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_db
from .roles import Permission, TeamRole
from app.api.teams.service import TeamAccessError, TeamService


def get_team_service(db: AsyncSession = Depends(get_db)) -> TeamService:
    return TeamService(db)


async def ensure_team_access(
    team_service: TeamService,
    user_id: str,
    team_id: Optional[str],
    permissions: Iterable[str | Permission] = (),
) -> TeamRole:
    try:
        return await team_service.validate_team_access(user_id, team_id, permissions)
    except TeamAccessError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


async def ensure_team_member(
    team_service: TeamService, user_id: str, team_id: str
) -> TeamRole:
    """Non-members get a 404."""
    role = await team_service.get_user_role(user_id, team_id)
    if role is None:
        raise HTTPException(status_code=404, detail="Team not found or access denied")
    return role
