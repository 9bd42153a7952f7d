import logging

from fastapi import APIRouter, Depends, HTTPException
from openai import OpenAIError

from app.core.auth import CurrentUser, get_current_user
from app.core.enforcement import ensure_team_access, get_team_service
from app.core.results import raise_for_result
from app.core.roles import Permission
from app.core.services import AppServices, get_services
from app.api.quickbooks.deps import get_session_manager
from app.api.quickbooks.service import describe_invoice
from app.api.quickbooks.session import QBOSessionManager
from app.api.teams.service import TeamService
from . import schemas as assistant_schemas
from .backends import QuickBooksInvoiceBackend
from .chat import build_system_prompt, run_chat
from .tools import ToolContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Assistant"])


@router.post("/chat")
async def chat(
    payload: assistant_schemas.ChatRequest,
    current_user: CurrentUser = Depends(get_current_user),
    team_service: TeamService = Depends(get_team_service),
    manager: QBOSessionManager = Depends(get_session_manager),
    services: AppServices = Depends(get_services),
):
    if not payload.message or not payload.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")

    role = await ensure_team_access(
        team_service, current_user.id, payload.teamId, [Permission.USE_AI_TOOLS]
    )
    team = raise_for_result(await team_service.get_team(payload.teamId)).data

    session = await manager.get_session(current_user.id)
    if session:
        backend = QuickBooksInvoiceBackend(manager, session)
    else:
        backend = services.get_mock_invoices()

    prompt = build_system_prompt(team.team_name, role.value, team.description)
    try:
        reply = await run_chat(
            services.get_openai_client(),
            prompt,
            payload.message,
            ToolContext(backend=backend),
            history=[m.model_dump() for m in payload.history],
        )
    except OpenAIError as e:
        logger.error("Chat completion failed for %s: %s", current_user.id, e)
        raise HTTPException(status_code=500, detail="Failed to generate response")

    return {"success": True, "message": reply, "source": backend.name}


@router.get("/ai/invoices")
async def ai_invoices(
    current_user: CurrentUser = Depends(get_current_user),
    manager: QBOSessionManager = Depends(get_session_manager),
):
    session = await manager.get_session(current_user.id)
    if not session:
        raise HTTPException(status_code=400, detail="QuickBooks not connected")

    result = await manager.get_invoices(session, 50, 0)
    if not result.success:
        raise HTTPException(
            status_code=500, detail=result.error or "Failed to fetch invoices"
        )

    invoices = [describe_invoice(inv) for inv in result.data or []]
    return {"success": True, "data": invoices, "count": len(invoices)}
