import json
from datetime import timedelta

import pytest
from sqlalchemy import select

from app.api.audit.crud import MAX_PAYLOAD_CHARS, get_audit_logs, log_audit
from app.api.audit.models import AuditLog
from app.api.quickbooks.models import QuickBooksOAuthState, QuickBooksToken
from app.api.teams.models import TeamInvitation
from app.maintenance import run_cleanup
from app.utils.dates import utcnow
from conftest import TEST_KEY

pytestmark = pytest.mark.asyncio


class TestAuditLog:
    async def test_action_and_payload(self, db):
        await log_audit(db, "user-1", "team-1", "create", target_id=42, payload={"DocNumber": "1037"})

        log = (await db.execute(select(AuditLog))).scalar_one()
        assert log.action == "invoice:create"
        assert log.target_id == "42"
        assert json.loads(log.payload) == {"DocNumber": "1037"}

    async def test_payload_is_truncated(self, db):
        await log_audit(db, "user-1", "team-1", "update", target="customer", payload={"notes": "x" * 20000})

        log = (await db.execute(select(AuditLog))).scalar_one()
        assert log.action == "customer:update"
        assert len(log.payload) == MAX_PAYLOAD_CHARS

    async def test_no_payload(self, db):
        await log_audit(db, "user-1", None, "delete")

        log = (await db.execute(select(AuditLog))).scalar_one()
        assert log.payload is None and log.team_id is None

    async def test_logs_newest_first_per_team(self, db):
        for action in ("create", "update", "delete"):
            await log_audit(db, "user-1", "team-1", action, target_id="7")
        await log_audit(db, "user-2", "team-2", "create")

        logs = await get_audit_logs(db, "team-1")
        assert [log.action for log in logs] == ["invoice:delete", "invoice:update", "invoice:create"]

        assert len(await get_audit_logs(db, "team-1", limit=1)) == 1


class TestMaintenance:
    async def test_cleanup_counts(self, db, session_factory, token_store, make_team):
        now = utcnow()
        await token_store.store_tokens("stale", "a", "r", "realm", now - timedelta(days=1))
        await token_store.store_tokens("fresh", "a", "r", "realm", now + timedelta(hours=1))

        team = await make_team()
        db.add_all(
            [
                TeamInvitation(
                    team_id=team.id, email="old@example.com", role="viewer",
                    invited_by="owner-1", token="old-token", expires_at=now - timedelta(days=1),
                ),
                TeamInvitation(
                    team_id=team.id, email="new@example.com", role="viewer",
                    invited_by="owner-1", token="new-token", expires_at=now + timedelta(days=6),
                ),
                QuickBooksOAuthState(state="stale-state", user_id="owner-1", created_at=now - timedelta(minutes=30)),
                QuickBooksOAuthState(state="live-state", user_id="owner-1", created_at=now),
            ]
        )
        await db.commit()

        counts = await run_cleanup(session_factory, encryption_key=TEST_KEY)

        assert counts == {"tokens": 1, "invitations": 1, "oauth_states": 1}
        assert [row.user_id for row in (await db.execute(select(QuickBooksToken))).scalars()] == ["fresh"]
        invitations = (await db.execute(select(TeamInvitation.email))).scalars().all()
        assert invitations == ["new@example.com"]
        states = (await db.execute(select(QuickBooksOAuthState.state))).scalars().all()
        assert states == ["live-state"]

    async def test_cleanup_with_nothing_to_do(self, session_factory):
        assert await run_cleanup(session_factory, encryption_key=TEST_KEY) == {
            "tokens": 0,
            "invitations": 0,
            "oauth_states": 0,
        }
