import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.core.roles import TeamRole
from app.utils.dates import utcnow
from .models import Team, TeamInvitation, TeamMember

INVITATION_TTL = timedelta(days=7)


async def create_team_with_admin(
    db: AsyncSession,
    owner_id: str,
    team_name: str,
    description: Optional[str] = None,
    owner_email: Optional[str] = None,
) -> Team:
    team = Team(team_name=team_name, description=description, owner_id=owner_id)
    db.add(team)
    await db.flush()
    db.add(
        TeamMember(
            team_id=team.id,
            user_id=owner_id,
            role=TeamRole.ADMIN.value,
            email=owner_email,
        )
    )
    await db.commit()
    await db.refresh(team)
    return team


async def get_team(db: AsyncSession, team_id: str) -> Optional[Team]:
    result = await db.execute(select(Team).where(Team.id == team_id))
    return result.scalar_one_or_none()


async def get_member(db: AsyncSession, team_id: str, user_id: str) -> Optional[TeamMember]:
    result = await db.execute(
        select(TeamMember).where(
            TeamMember.team_id == team_id, TeamMember.user_id == user_id
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_team_members(db: AsyncSession, team_id: str) -> list[TeamMember]:
    result = await db.execute(
        select(TeamMember)
        .where(TeamMember.team_id == team_id)
        .order_by(TeamMember.joined_at)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


async def get_team_invitations(db: AsyncSession, team_id: str) -> list[TeamInvitation]:
    result = await db.execute(
        select(TeamInvitation)
        .where(TeamInvitation.team_id == team_id, TeamInvitation.expires_at > utcnow())
        .order_by(TeamInvitation.created_at.desc())
    )
    return result.scalars().all()


async def get_user_teams(db: AsyncSession, user_id: str) -> list[dict]:
    counts = (
        select(TeamMember.team_id, func.count().label("member_count"))
        .group_by(TeamMember.team_id)
        .subquery()
    )
    result = await db.execute(
        select(Team, TeamMember.role, counts.c.member_count)
        .join(TeamMember, TeamMember.team_id == Team.id)
        .join(counts, counts.c.team_id == Team.id)
        .where(TeamMember.user_id == user_id)
        .order_by(Team.created_at)
    )
    return [
        {
            "team_id": team.id,
            "team_name": team.team_name,
            "role": role,
            "is_owner": team.owner_id == user_id,
            "member_count": member_count,
        }
        for team, role, member_count in result.all()
    ]


async def update_team(db: AsyncSession, team_id: str, data: dict) -> Optional[Team]:
    team = await get_team(db, team_id)
    if not team:
        return None
    for key, value in data.items():
        if value is not None:
            setattr(team, key, value)
    team.updated_at = utcnow()
    await db.commit()
    await db.refresh(team)
    return team


async def delete_team(db: AsyncSession, team_id: str) -> bool:
    # children first so sqlite without FK enforcement stays consistent
    await db.execute(delete(TeamInvitation).where(TeamInvitation.team_id == team_id))
    await db.execute(delete(TeamMember).where(TeamMember.team_id == team_id))
    result = await db.execute(delete(Team).where(Team.id == team_id))
    await db.commit()
    return result.rowcount > 0


async def create_invitation(
    db: AsyncSession,
    team_id: str,
    email: str,
    role: str,
    invited_by: str,
) -> TeamInvitation:
    invitation = TeamInvitation(
        team_id=team_id,
        email=email.lower(),
        role=role,
        invited_by=invited_by,
        token=secrets.token_urlsafe(32),
        expires_at=utcnow() + INVITATION_TTL,
    )
    db.add(invitation)
    await db.commit()
    await db.refresh(invitation)
    return invitation


async def get_invitation_by_token(db: AsyncSession, token: str) -> Optional[TeamInvitation]:
    result = await db.execute(select(TeamInvitation).where(TeamInvitation.token == token))
    return result.scalar_one_or_none()


async def accept_invitation(
    db: AsyncSession,
    invitation: TeamInvitation,
    user_id: str,
    email: Optional[str] = None,
) -> TeamMember:
    member = await get_member(db, invitation.team_id, user_id)
    if member is None:
        member = TeamMember(
            team_id=invitation.team_id,
            user_id=user_id,
            role=invitation.role,
            email=email or invitation.email,
            invited_by=invitation.invited_by,
        )
        db.add(member)
    await db.delete(invitation)
    await db.commit()
    await db.refresh(member)
    return member


async def delete_invitation(db: AsyncSession, team_id: str, invitation_id: str) -> bool:
    result = await db.execute(
        delete(TeamInvitation).where(
            TeamInvitation.team_id == team_id, TeamInvitation.id == invitation_id
        )
    )
    await db.commit()
    return result.rowcount > 0


async def cleanup_expired_invitations(db: AsyncSession) -> int:
    result = await db.execute(
        delete(TeamInvitation).where(TeamInvitation.expires_at < utcnow())
    )
    await db.commit()
    return result.rowcount or 0


async def _lock_admins(db: AsyncSession, team_id: str) -> None:
    # FOR UPDATE is dropped by dialects that do not support it
    await db.execute(
        select(TeamMember.user_id)
        .where(TeamMember.team_id == team_id, TeamMember.role == TeamRole.ADMIN.value)
        .with_for_update()
    )


def _keeps_an_admin(team_id: str):
    """True unless the row is the team's only admin."""
    admins = aliased(TeamMember)
    admin_count = (
        select(func.count())
        .select_from(admins)
        .where(admins.team_id == team_id, admins.role == TeamRole.ADMIN.value)
        .scalar_subquery()
    )
    return or_(TeamMember.role != TeamRole.ADMIN.value, admin_count > 1)


async def update_member_role(
    db: AsyncSession, team_id: str, user_id: str, role: str
) -> int:
    """Returns the number of rows changed; 0 means missing member or last admin."""
    await _lock_admins(db, team_id)
    guard = and_(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
    if role != TeamRole.ADMIN.value:
        guard = and_(guard, _keeps_an_admin(team_id))
    result = await db.execute(
        update(TeamMember).where(guard).values(role=role).execution_options(
            synchronize_session=False
        )
    )
    await db.commit()
    return result.rowcount


async def remove_member(db: AsyncSession, team_id: str, user_id: str) -> int:
    await _lock_admins(db, team_id)
    result = await db.execute(
        delete(TeamMember)
        .where(
            TeamMember.team_id == team_id,
            TeamMember.user_id == user_id,
            _keeps_an_admin(team_id),
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount
