import logging

from fastapi import APIRouter, Depends, HTTPException

from ...core.auth import CurrentUser, get_current_user
from ...core.enforcement import ensure_team_access, ensure_team_member, get_team_service
from ...core.results import raise_for_result
from ...core.roles import Permission, TeamRole
from . import schemas as teams_schemas
from .service import TeamService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/teams", tags=["Teams"])


@router.get("")
async def list_teams(
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
):
    teams = await team_service.get_user_teams(current_user.id)
    return {"success": True, "data": {"teams": teams}}


@router.post("")
async def create_team(
    payload: teams_schemas.TeamCreate,
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
):
    if not payload.team_name.strip():
        raise HTTPException(status_code=400, detail="Team name is required")
    result = raise_for_result(
        await team_service.create_team(current_user.id, payload, current_user.email)
    )
    return {
        "success": True,
        "data": {"team": result.data, "team_id": result.data.id},
        "message": "Team created successfully",
    }


# invitation endpoints are declared before /{team_id} routes


@router.get("/invitations/{token}")
async def get_invitation(
    token: str,
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
):
    result = raise_for_result(await team_service.get_invitation_by_token(token))
    return {"success": True, "data": {"invitation": result.data}}


@router.post("/invitations/accept")
async def accept_invitation(
    payload: teams_schemas.AcceptInvitationRequest,
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
):
    token = payload.token.strip()
    if not token:
        raise HTTPException(status_code=400, detail="Invitation token is required")
    result = raise_for_result(
        await team_service.accept_invitation(token, current_user.id, current_user.email)
    )
    return {
        "success": True,
        "data": {"team_id": result.data.team_id, "member": result.data},
        "message": "Invitation accepted successfully",
    }


@router.get("/{team_id}")
async def get_team(
    team_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
):
    role = await ensure_team_member(team_service, current_user.id, team_id)
    team = raise_for_result(await team_service.get_team(team_id))
    members = await team_service.get_team_members(team_id)
    invitations = await team_service.get_team_invitations(team_id)
    return {
        "success": True,
        "data": teams_schemas.TeamDetail(
            team=team.data,
            members=members.data,
            invitations=invitations.data,
            user_role=role,
        ),
    }


@router.put("/{team_id}")
async def update_team(
    team_id: str,
    payload: teams_schemas.TeamUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
):
    check = await team_service.check_user_role(
        current_user.id, team_id, [TeamRole.ADMIN]
    )
    if not check.has_permission:
        raise HTTPException(status_code=403, detail="Admin access required")
    result = raise_for_result(await team_service.update_team(team_id, payload))
    return {"success": True, "data": {"team": result.data}}


@router.delete("/{team_id}")
async def delete_team(
    team_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
):
    if not await team_service.is_team_owner(current_user.id, team_id):
        raise HTTPException(status_code=403, detail="Only team owner can delete the team")
    raise_for_result(await team_service.delete_team(team_id))
    return {"success": True, "message": "Team deleted successfully"}


@router.get("/{team_id}/members")
async def list_members(
    team_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
):
    await ensure_team_member(team_service, current_user.id, team_id)
    result = await team_service.get_team_members(team_id)
    return {"success": True, "data": {"members": result.data}}


@router.put("/{team_id}/members/{user_id}")
async def update_member_role(
    team_id: str,
    user_id: str,
    payload: teams_schemas.RoleUpdateRequest,
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.CHANGE_ROLES]
    )
    result = raise_for_result(
        await team_service.update_member_role(team_id, user_id, payload.role)
    )
    logger.info(
        "User %s changed role of %s in team %s to %s",
        current_user.id,
        user_id,
        team_id,
        payload.role.value,
    )
    return {
        "success": True,
        "data": result.data,
        "message": "Member role updated successfully",
    }


@router.delete("/{team_id}/members/{user_id}")
async def remove_member(
    team_id: str,
    user_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.REMOVE_USERS]
    )
    if user_id == current_user.id:
        raise HTTPException(status_code=400, detail="Cannot remove yourself from the team")
    raise_for_result(await team_service.remove_member(team_id, user_id))
    return {"success": True, "message": "Member removed successfully"}


@router.post("/{team_id}/invite")
async def invite_member(
    team_id: str,
    payload: teams_schemas.InviteRequest,
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
):
    if not await team_service.check_user_permission(
        current_user.id, team_id, Permission.INVITE_USERS
    ):
        raise HTTPException(
            status_code=403, detail="Admin access required to invite members"
        )
    result = raise_for_result(
        await team_service.invite_user(
            team_id, payload.email, payload.role.value, current_user.id
        )
    )
    return {
        "success": True,
        "data": {
            "invitation": result.data,
            "invitation_token": result.extra["invitation_token"],
        },
        "message": f"Invitation sent to {payload.email}",
    }


@router.get("/{team_id}/invitations")
async def list_invitations(
    team_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.INVITE_USERS]
    )
    result = await team_service.get_team_invitations(team_id)
    return {"success": True, "data": {"invitations": result.data}}


@router.delete("/{team_id}/invitations/{invitation_id}")
async def revoke_invitation(
    team_id: str,
    invitation_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.INVITE_USERS]
    )
    raise_for_result(await team_service.delete_invitation(team_id, invitation_id))
    return {"success": True, "message": "Invitation revoked"}
