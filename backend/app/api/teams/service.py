import logging
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.results import ServiceResult
from app.core.roles import (
    Permission,
    TeamRole,
    get_required_roles_for_permission,
    has_permission,
)
from app.utils.dates import normalize_utc, utcnow
from . import crud as teams_crud
from . import schemas as teams_schemas

logger = logging.getLogger(__name__)


class TeamAccessError(Exception):
    def __init__(self, message: str, status_code: int = 403):
        super().__init__(message)
        self.status_code = status_code


class TeamService:
    """
    Membership, roles and invitations for one request's database session.

    Lookups (``check_user_role``, ``check_user_permission``) return plain
    values; everything else returns a ``ServiceResult`` whose ``code`` tells
    the route which status to use.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def check_user_role(
        self,
        user_id: str,
        team_id: str,
        allowed_roles: Optional[Iterable[str]] = None,
    ) -> teams_schemas.UserRoleCheck:
        member = await teams_crud.get_member(self.db, team_id, user_id)
        if not member:
            return teams_schemas.UserRoleCheck(
                has_permission=False, user_role=None, is_member=False
            )
        allowed = None if allowed_roles is None else {TeamRole(r).value for r in allowed_roles}
        return teams_schemas.UserRoleCheck(
            has_permission=allowed is None or member.role in allowed,
            user_role=member.role,
            is_member=True,
        )

    async def check_user_permission(
        self, user_id: str, team_id: str, permission: str | Permission
    ) -> bool:
        allowed = get_required_roles_for_permission(permission)
        check = await self.check_user_role(user_id, team_id, allowed)
        return check.has_permission

    async def validate_team_access(
        self,
        user_id: str,
        team_id: Optional[str],
        permissions: Iterable[str | Permission] = (),
    ) -> TeamRole:
        """Raise TeamAccessError unless the user is a member holding every permission."""
        if not team_id:
            raise TeamAccessError("Team ID is required", status_code=400)
        check = await self.check_user_role(user_id, team_id)
        if not check.is_member:
            raise TeamAccessError("Access denied: not a member of this team")
        for permission in permissions:
            if not has_permission(check.user_role, permission):
                raise TeamAccessError(
                    f"Access denied: {Permission(permission).value} permission required "
                    f"(current role: {check.user_role.value})"
                )
        return check.user_role

    async def get_user_teams(self, user_id: str) -> list[teams_schemas.UserTeam]:
        rows = await teams_crud.get_user_teams(self.db, user_id)
        return [teams_schemas.UserTeam(**row) for row in rows]

    async def get_teams_with_permission(
        self, user_id: str, permission: str | Permission
    ) -> list[teams_schemas.UserTeam]:
        return [
            team
            for team in await self.get_user_teams(user_id)
            if has_permission(team.role, permission)
        ]

    async def get_user_role(self, user_id: str, team_id: str) -> Optional[TeamRole]:
        member = await teams_crud.get_member(self.db, team_id, user_id)
        return TeamRole(member.role) if member else None

    async def is_team_owner(self, user_id: str, team_id: str) -> bool:
        team = await teams_crud.get_team(self.db, team_id)
        return bool(team and team.owner_id == user_id)

    async def create_team(
        self,
        owner_id: str,
        payload: teams_schemas.TeamCreate,
        owner_email: Optional[str] = None,
    ) -> ServiceResult:
        try:
            team = await teams_crud.create_team_with_admin(
                self.db,
                owner_id=owner_id,
                team_name=payload.team_name.strip(),
                description=payload.description,
                owner_email=owner_email,
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Error creating team: %s", e)
            return ServiceResult.fail("Failed to create team")
        logger.info("Team %s created by %s", team.id, owner_id)
        return ServiceResult.ok(teams_schemas.TeamOut.model_validate(team))

    async def get_team(self, team_id: str) -> ServiceResult:
        team = await teams_crud.get_team(self.db, team_id)
        if not team:
            return ServiceResult.fail("Team not found", code="not_found")
        return ServiceResult.ok(teams_schemas.TeamOut.model_validate(team))

    async def get_team_members(self, team_id: str) -> ServiceResult:
        members = await teams_crud.get_team_members(self.db, team_id)
        return ServiceResult.ok(
            [teams_schemas.TeamMemberOut.model_validate(m) for m in members]
        )

    async def get_team_invitations(self, team_id: str) -> ServiceResult:
        invitations = await teams_crud.get_team_invitations(self.db, team_id)
        return ServiceResult.ok(
            [teams_schemas.TeamInvitationOut.model_validate(i) for i in invitations]
        )

    async def update_team(
        self, team_id: str, payload: teams_schemas.TeamUpdate
    ) -> ServiceResult:
        try:
            team = await teams_crud.update_team(
                self.db, team_id, payload.model_dump(exclude_unset=True)
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Error updating team %s: %s", team_id, e)
            return ServiceResult.fail("Failed to update team")
        if not team:
            return ServiceResult.fail("Team not found", code="not_found")
        return ServiceResult.ok(teams_schemas.TeamOut.model_validate(team))

    async def delete_team(self, team_id: str) -> ServiceResult:
        try:
            deleted = await teams_crud.delete_team(self.db, team_id)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Error deleting team %s: %s", team_id, e)
            return ServiceResult.fail("Failed to delete team")
        if not deleted:
            return ServiceResult.fail("Team not found", code="not_found")
        logger.info("Team %s deleted", team_id)
        return ServiceResult.ok({"team_id": team_id})

    async def invite_user(
        self, team_id: str, email: str, role: str, invited_by: str
    ) -> ServiceResult:
        try:
            invitation = await teams_crud.create_invitation(
                self.db, team_id, email, TeamRole(role).value, invited_by
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Error inviting %s to team %s: %s", email, team_id, e)
            return ServiceResult.fail("Failed to send invitation")
        # no mail is sent from here; the token goes back to the inviter
        logger.info("Invitation for %s to team %s created", email, team_id)
        return ServiceResult.ok(
            teams_schemas.TeamInvitationOut.model_validate(invitation),
            invitation_token=invitation.token,
        )

    async def get_invitation_by_token(self, token: str) -> ServiceResult:
        invitation = await teams_crud.get_invitation_by_token(self.db, token)
        if not invitation:
            return ServiceResult.fail("Invalid or expired invitation", code="not_found")
        if normalize_utc(invitation.expires_at) < utcnow():
            return ServiceResult.fail("Invitation has expired", code="expired")
        team = await teams_crud.get_team(self.db, invitation.team_id)
        details = teams_schemas.InvitationDetails.model_validate(invitation)
        details.team_name = team.team_name if team else None
        return ServiceResult.ok(details)

    async def accept_invitation(
        self, token: str, user_id: str, email: Optional[str] = None
    ) -> ServiceResult:
        invitation = await teams_crud.get_invitation_by_token(self.db, token)
        if not invitation:
            return ServiceResult.fail("Invalid or expired invitation", code="not_found")
        if normalize_utc(invitation.expires_at) < utcnow():
            return ServiceResult.fail("Invitation has expired", code="expired")
        if email and invitation.email.lower() != email.lower():
            return ServiceResult.fail(
                "This invitation was sent to a different email address",
                code="forbidden",
            )
        try:
            member = await teams_crud.accept_invitation(self.db, invitation, user_id, email)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Error accepting invitation: %s", e)
            return ServiceResult.fail("Failed to accept invitation")
        logger.info("User %s joined team %s as %s", user_id, member.team_id, member.role)
        return ServiceResult.ok(teams_schemas.TeamMemberOut.model_validate(member))

    async def delete_invitation(self, team_id: str, invitation_id: str) -> ServiceResult:
        deleted = await teams_crud.delete_invitation(self.db, team_id, invitation_id)
        if not deleted:
            return ServiceResult.fail("Invitation not found", code="not_found")
        return ServiceResult.ok({"invitation_id": invitation_id})

    async def update_member_role(
        self, team_id: str, user_id: str, role: str
    ) -> ServiceResult:
        member = await teams_crud.get_member(self.db, team_id, user_id)
        if not member:
            return ServiceResult.fail("Member not found", code="not_found")
        changed = await teams_crud.update_member_role(
            self.db, team_id, user_id, TeamRole(role).value
        )
        if not changed:
            return ServiceResult.fail("Cannot demote the last admin", code="last_admin")
        return ServiceResult.ok({"user_id": user_id, "role": TeamRole(role).value})

    async def remove_member(self, team_id: str, user_id: str) -> ServiceResult:
        member = await teams_crud.get_member(self.db, team_id, user_id)
        if not member:
            return ServiceResult.fail("Member not found", code="not_found")
        removed = await teams_crud.remove_member(self.db, team_id, user_id)
        if not removed:
            return ServiceResult.fail("Cannot remove the last admin", code="last_admin")
        return ServiceResult.ok({"user_id": user_id})

    async def cleanup_expired_invitations(self) -> ServiceResult:
        removed = await teams_crud.cleanup_expired_invitations(self.db)
        logger.info("Removed %s expired invitations", removed)
        return ServiceResult.ok(removed)
