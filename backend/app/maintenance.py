"""
Periodic cleanup, meant to be run from cron:

    python -m app.maintenance
"""

import asyncio
import logging

from app.core import config
from app.core.database import SessionLocal, engine
from app.api.quickbooks.client import purge_oauth_states
from app.api.quickbooks.token_store import QuickBooksTokenStore
from app.api.teams.service import TeamService
from app.utils.encryption import get_encryption_key

logger = logging.getLogger(__name__)


async def run_cleanup(session_factory=SessionLocal, encryption_key=None) -> dict:
    async with session_factory() as db:
        store = QuickBooksTokenStore(db, encryption_key or get_encryption_key())
        tokens = await store.cleanup_expired_tokens()
        invitations = (await TeamService(db).cleanup_expired_invitations()).data
        states = await purge_oauth_states(db)

    counts = {"tokens": tokens, "invitations": invitations, "oauth_states": states}
    logger.info("Maintenance sweep finished: %s", counts)
    return counts


async def main() -> None:
    try:
        counts = await run_cleanup()
    finally:
        await engine.dispose()
    for name, count in counts.items():
        print(f"{name}: {count}")


if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL.upper())
    asyncio.run(main())
