import asyncio
import logging
import time
from datetime import date
from typing import Any, Dict, Optional
from urllib.parse import quote

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.auth import CurrentUser, get_current_user
from app.core.database import get_db
from app.core.enforcement import ensure_team_access, get_team_service
from app.core.roles import Permission
from app.api.audit.crud import log_audit
from app.api.teams.service import TeamService
from app.utils.encryption import TokenEncryptionError
from . import schemas as qb_schemas
from .client import (
    QuickBooksAuthError,
    QuickBooksAPIError,
    QuickBooksClient,
    consume_oauth_state,
    create_oauth_state,
)
from .deps import get_qb_client, get_session_manager
from .service import filter_invoices
from .session import OperationResult, QBOSession, QBOSessionManager
from .token_store import TokenStoreError

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/api/auth/quickbooks", tags=["QuickBooks"])
status_router = APIRouter(prefix="/api/quickbooks", tags=["QuickBooks"])
router = APIRouter(prefix="/api/qbo", tags=["QuickBooks"])

MAX_LIST_LIMIT = 500


def _envelope(result: OperationResult, not_found: bool = False) -> JSONResponse:
    # vendor faults are reported with a 200 and success=false
    if not result.success:
        return JSONResponse(content={"success": False, "error": result.error})
    if not_found and result.data is None:
        return JSONResponse(
            status_code=404, content={"success": False, "error": "Invoice not found"}
        )
    return JSONResponse(content={"success": True, "data": result.data})


async def _require_session(manager: QBOSessionManager, user_id: str) -> QBOSession:
    session = await manager.get_session(user_id)
    if not session:
        raise HTTPException(status_code=401, detail="QuickBooks not connected")
    return session


# --- OAuth ---------------------------------------------------------------


@auth_router.get("")
async def connect_quickbooks(
    current_user: CurrentUser = Depends(get_current_user),
    qb_client: QuickBooksClient = Depends(get_qb_client),
    db: AsyncSession = Depends(get_db),
):
    state = await create_oauth_state(db, current_user.id)
    auth_url = await asyncio.to_thread(qb_client.get_auth_uri, state)
    logger.info("Starting QuickBooks authorization for user %s", current_user.id)
    return RedirectResponse(url=auth_url)


@auth_router.get("/callback")
async def quickbooks_callback(
    request: Request,
    qb_client: QuickBooksClient = Depends(get_qb_client),
    db: AsyncSession = Depends(get_db),
):
    code = request.query_params.get("code")
    realm_id = request.query_params.get("realmId")
    state = request.query_params.get("state")
    redirect_base = f"{config.FRONTEND_URL}/dashboard"

    if not code or not realm_id:
        raise HTTPException(status_code=400, detail="Missing authorization code or realm ID")

    user_id = await consume_oauth_state(db, state)
    if not user_id:
        logger.warning("Rejected QuickBooks callback with unknown state")
        raise HTTPException(status_code=400, detail="Invalid state parameter")

    try:
        await qb_client.create_token(code, realm_id, user_id)
    except (QuickBooksAuthError, TokenStoreError) as e:
        logger.error("QuickBooks OAuth callback failed for %s: %s", user_id, e)
        return RedirectResponse(
            url=f"{redirect_base}?error=oauth_failed&message={quote(str(e))}"
        )

    return RedirectResponse(url=f"{redirect_base}?connected=true")


# --- connection status ---------------------------------------------------


@status_router.get("/status")
async def quickbooks_status(
    current_user: CurrentUser = Depends(get_current_user),
    qb_client: QuickBooksClient = Depends(get_qb_client),
):
    try:
        loaded = await qb_client.load_tokens_for_user(current_user.id)
    except (TokenStoreError, TokenEncryptionError) as e:
        logger.warning("Stored QuickBooks tokens unusable for %s: %s", current_user.id, e)
        loaded = False

    if not loaded:
        return {
            "success": True,
            "connected": False,
            "message": "QuickBooks not connected",
        }

    try:
        company = await qb_client.get_company_info()
    except (QuickBooksAPIError, QuickBooksAuthError) as e:
        logger.warning("QuickBooks verification failed for %s: %s", current_user.id, e)
        return {
            "success": True,
            "connected": False,
            "message": "QuickBooks connection verification failed",
        }

    return {
        "success": True,
        "connected": True,
        "companyName": (company or {}).get("CompanyName"),
        "realmId": qb_client.realm_id,
        "message": "QuickBooks connected successfully",
    }


@status_router.delete("/status")
async def quickbooks_disconnect(
    current_user: CurrentUser = Depends(get_current_user),
    qb_client: QuickBooksClient = Depends(get_qb_client),
):
    await qb_client.disconnect_user(current_user.id)
    return {"success": True, "message": "QuickBooks disconnected successfully"}


# --- invoices ------------------------------------------------------------


@router.get("/invoices")
async def list_invoices(
    team_id: str = Query("", alias="teamId"),
    limit: int = Query(100, ge=1),
    offset: int = Query(0, ge=0),
    customer: str = "",
    status: str = "",
    doc_number: str = Query("", alias="docNumber"),
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    manager: QBOSessionManager = Depends(get_session_manager),
    db: AsyncSession = Depends(get_db),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.VIEW_INVOICES]
    )
    session = await _require_session(manager, current_user.id)

    result = await manager.get_invoices(session, min(limit, MAX_LIST_LIMIT), offset)
    if not result.success:
        return _envelope(result)

    invoices = filter_invoices(
        result.data or [], customer, status, doc_number, date_from, date_to
    )
    await log_audit(
        db,
        current_user.id,
        team_id,
        "list",
        payload={
            "limit": limit,
            "offset": offset,
            "customer": customer,
            "status": status,
            "from": date_from,
            "to": date_to,
            "docNumber": doc_number,
        },
    )
    return {"success": True, "data": invoices, "count": len(invoices)}


@router.post("/invoices")
async def create_invoice(
    payload: Dict[str, Any] = Body(...),
    team_id: str = Query("", alias="teamId"),
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    manager: QBOSessionManager = Depends(get_session_manager),
    db: AsyncSession = Depends(get_db),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.EDIT_INVOICES]
    )
    session = await _require_session(manager, current_user.id)
    result = await manager.create_invoice(session, payload)
    if result.success:
        await log_audit(
            db,
            current_user.id,
            team_id,
            "create",
            target_id=(result.data or {}).get("Id"),
            payload=payload,
        )
    return _envelope(result)


@router.get("/invoices/{invoice_id}")
async def get_invoice(
    invoice_id: str,
    team_id: str = Query("", alias="teamId"),
    by: str = "id",
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    manager: QBOSessionManager = Depends(get_session_manager),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.VIEW_INVOICES]
    )
    session = await _require_session(manager, current_user.id)
    if by == "doc":
        result = await manager.get_invoice_by_doc_number(session, invoice_id)
    else:
        result = await manager.get_invoice_by_id(session, invoice_id)
    return _envelope(result, not_found=True)


@router.put("/invoices/{invoice_id}")
async def update_invoice(
    invoice_id: str,
    patch: Dict[str, Any] = Body(...),
    team_id: str = Query("", alias="teamId"),
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    manager: QBOSessionManager = Depends(get_session_manager),
    db: AsyncSession = Depends(get_db),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.EDIT_INVOICES]
    )
    session = await _require_session(manager, current_user.id)
    result = await manager.update_invoice(session, invoice_id, patch)
    if result.success:
        await log_audit(
            db, current_user.id, team_id, "update", target_id=invoice_id, payload=patch
        )
    return _envelope(result)


@router.delete("/invoices/{invoice_id}")
async def delete_invoice(
    invoice_id: str,
    team_id: str = Query("", alias="teamId"),
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    manager: QBOSessionManager = Depends(get_session_manager),
    db: AsyncSession = Depends(get_db),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.DELETE_INVOICES]
    )
    session = await _require_session(manager, current_user.id)
    result = await manager.delete_invoice(session, invoice_id)
    if result.success:
        await log_audit(db, current_user.id, team_id, "delete", target_id=invoice_id)
    return _envelope(result)


@router.post("/invoices/{invoice_id}/send")
async def send_invoice(
    invoice_id: str,
    payload: qb_schemas.SendInvoiceRequest,
    team_id: str = Query("", alias="teamId"),
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    manager: QBOSessionManager = Depends(get_session_manager),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.EDIT_INVOICES]
    )
    session = await _require_session(manager, current_user.id)
    return _envelope(await manager.send_invoice_pdf(session, invoice_id, payload.email))


# --- customers, items, company -------------------------------------------


@router.get("/customers")
async def list_customers(
    team_id: str = Query("", alias="teamId"),
    limit: int = Query(50, ge=1, le=MAX_LIST_LIMIT),
    offset: int = Query(0, ge=0),
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    manager: QBOSessionManager = Depends(get_session_manager),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.VIEW_INVOICES]
    )
    session = await _require_session(manager, current_user.id)
    return _envelope(await manager.get_customers(session, limit, offset))


@router.post("/customers/create")
async def create_customer(
    payload: qb_schemas.CustomerCreate,
    team_id: str = Query("", alias="teamId"),
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    manager: QBOSessionManager = Depends(get_session_manager),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.EDIT_INVOICES]
    )
    session = await _require_session(manager, current_user.id)
    body = payload.model_dump(exclude_none=True)
    body["DisplayName"] = payload.DisplayName or f"Customer {int(time.time() * 1000)}"
    return _envelope(await manager.create_customer(session, body))


@router.get("/items")
async def list_items(
    team_id: str = Query("", alias="teamId"),
    limit: int = Query(50, ge=1, le=MAX_LIST_LIMIT),
    offset: int = Query(0, ge=0),
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    manager: QBOSessionManager = Depends(get_session_manager),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.VIEW_INVOICES]
    )
    session = await _require_session(manager, current_user.id)
    return _envelope(await manager.get_items(session, limit, offset))


@router.post("/items/create")
async def create_item(
    payload: qb_schemas.ItemCreate,
    team_id: str = Query("", alias="teamId"),
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    manager: QBOSessionManager = Depends(get_session_manager),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.EDIT_INVOICES]
    )
    session = await _require_session(manager, current_user.id)

    income_ref = payload.IncomeAccountRef
    if not income_ref:
        income = await manager.get_default_income_account(session)
        if income.success and income.data:
            income_ref = {"value": income.data.get("Id")}

    body = payload.model_dump(exclude_none=True)
    body.update(
        Name=payload.Name or f"Service {int(time.time() * 1000)}",
        Type=payload.Type or "Service",
        UnitPrice=payload.UnitPrice if payload.UnitPrice is not None else 25,
    )
    if income_ref:
        body["IncomeAccountRef"] = income_ref
    return _envelope(await manager.create_item(session, body))


@router.get("/company")
async def company_info(
    team_id: str = Query("", alias="teamId"),
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    manager: QBOSessionManager = Depends(get_session_manager),
):
    await ensure_team_access(
        team_service, current_user.id, team_id, [Permission.MANAGE_QUICKBOOKS]
    )
    session = await _require_session(manager, current_user.id)
    return _envelope(await manager.get_company_info(session))
