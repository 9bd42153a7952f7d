import json
import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import AuditLog

logger = logging.getLogger(__name__)

MAX_PAYLOAD_CHARS = 8000


async def log_audit(
    db: AsyncSession,
    user_id: str,
    team_id: Optional[str],
    action: str,
    target: str = "invoice",
    target_id: Optional[str] = None,
    payload: Any = None,
) -> None:
    """Best-effort audit trail; a failed write is logged, never raised."""
    serialized = None
    if payload is not None:
        serialized = json.dumps(payload, default=str)[:MAX_PAYLOAD_CHARS]
    try:
        db.add(
            AuditLog(
                user_id=user_id,
                team_id=team_id,
                action=f"{target}:{action}",
                target_id=str(target_id) if target_id is not None else None,
                payload=serialized,
            )
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.warning("Audit log failed: %s", e)


async def get_audit_logs(db: AsyncSession, team_id: str, limit: int = 100) -> list[AuditLog]:
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.team_id == team_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
    )
    return result.scalars().all()
