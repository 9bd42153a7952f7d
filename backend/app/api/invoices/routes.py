import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import CurrentUser, get_current_user
from app.core.database import get_db
from app.core.enforcement import ensure_team_access, get_team_service
from app.core.roles import Permission
from app.api.audit.crud import log_audit
from app.api.teams.service import TeamService
from . import crud as invoices_crud
from . import schemas as invoices_schemas

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/invoices", tags=["Invoices"])


def _out(invoice) -> dict:
    return invoices_schemas.InvoiceOut.model_validate(invoice).model_dump(mode="json")


@router.get("")
async def list_invoices(
    team_id: str = Query("", alias="teamId"),
    status: Optional[invoices_schemas.InvoiceStatus] = None,
    customer: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    db: AsyncSession = Depends(get_db),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.VIEW_INVOICES]
    )
    invoices, total = await invoices_crud.list_invoices(
        db,
        team_id,
        status=status.value if status else None,
        customer=customer,
        limit=limit,
        offset=offset,
    )
    return {
        "success": True,
        "data": [_out(inv) for inv in invoices],
        "count": len(invoices),
        "total": total,
    }


@router.post("")
async def create_invoice(
    payload: invoices_schemas.InvoiceCreate,
    team_id: str = Query("", alias="teamId"),
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    db: AsyncSession = Depends(get_db),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.EDIT_INVOICES]
    )
    try:
        invoice = await invoices_crud.create_invoice(db, team_id, current_user.id, payload)
    except invoices_crud.InvoiceNumberConflict as e:
        logger.error(str(e))
        raise HTTPException(status_code=409, detail="Invoice number conflict, please retry")
    logger.info("Invoice %s created in team %s", invoice.invoice_number, team_id)
    await log_audit(
        db,
        current_user.id,
        team_id,
        "create",
        target_id=invoice.id,
        payload={"invoice_number": invoice.invoice_number, "total": invoice.total_amount},
    )
    return {
        "success": True,
        "data": _out(invoice),
        "message": "Invoice created successfully",
    }


@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: str,
    team_id: str = Query("", alias="teamId"),
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    db: AsyncSession = Depends(get_db),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.VIEW_INVOICES]
    )
    invoice = await invoices_crud.get_invoice(db, team_id, invoice_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return {"success": True, "data": _out(invoice)}


@router.put("/{invoice_id}")
async def update_invoice(
    invoice_id: str,
    payload: invoices_schemas.InvoiceUpdate,
    team_id: str = Query("", alias="teamId"),
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    db: AsyncSession = Depends(get_db),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.EDIT_INVOICES]
    )
    invoice = await invoices_crud.get_invoice(db, team_id, invoice_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    invoice = await invoices_crud.update_invoice(db, invoice, payload)
    await log_audit(
        db,
        current_user.id,
        team_id,
        "update",
        target_id=invoice_id,
        payload=payload.model_dump(exclude_unset=True, mode="json"),
    )
    return {
        "success": True,
        "data": _out(invoice),
        "message": "Invoice updated successfully",
    }


@router.delete("/{invoice_id}")
async def delete_invoice(
    invoice_id: str,
    team_id: str = Query("", alias="teamId"),
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    db: AsyncSession = Depends(get_db),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.DELETE_INVOICES]
    )
    if not await invoices_crud.delete_invoice(db, team_id, invoice_id):
        raise HTTPException(status_code=404, detail="Invoice not found")
    await log_audit(db, current_user.id, team_id, "delete", target_id=invoice_id)
    return {"success": True, "message": "Invoice deleted successfully"}
