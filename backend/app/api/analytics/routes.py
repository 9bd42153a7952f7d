from typing import Literal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import CurrentUser, get_current_user
from app.core.database import get_db
from app.core.enforcement import ensure_team_access, get_team_service
from app.core.roles import Permission
from app.api.invoices import crud as invoices_crud
from app.api.teams.service import TeamService
from app.utils.dates import utcnow
from .utils import compute_invoice_analytics, get_cutoff_dates

router = APIRouter(prefix="/api/analytics", tags=["Analytics"])


@router.get("")
async def invoice_analytics(
    team_id: str = Query("", alias="teamId"),
    range: Literal["7d", "30d", "90d", "1y"] = Query("30d"),
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    db: AsyncSession = Depends(get_db),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.VIEW_INVOICES]
    )

    current_start, previous_start = get_cutoff_dates(range, utcnow())
    current = await invoices_crud.get_invoices_between(
        db, team_id, current_start, created_by=current_user.id
    )
    previous = await invoices_crud.get_invoices_between(
        db, team_id, previous_start, current_start, created_by=current_user.id
    )

    return JSONResponse(
        content={"success": True, "data": compute_invoice_analytics(current, previous)},
        headers={"Cache-Control": "private, max-age=60"},
    )
