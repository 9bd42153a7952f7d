import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from app.utils.dates import normalize_utc, utcnow
from app.utils.encryption import TokenEncryption
from .models import QuickBooksToken

logger = logging.getLogger(__name__)

EXPIRY_BUFFER = timedelta(minutes=5)


class TokenStoreError(Exception):
    pass


@dataclass
class DecryptedTokens:
    user_id: str
    access_token: str
    refresh_token: str
    realm_id: str
    expires_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def expires_soon(self, buffer: timedelta = EXPIRY_BUFFER) -> bool:
        return utcnow() >= self.expires_at - buffer


def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise TokenStoreError(f"Unsupported database dialect for upsert: {dialect}")


class QuickBooksTokenStore:
    """
    Encrypted per-user QuickBooks credentials.

    One row per user; writes go through a native ``ON CONFLICT`` upsert so
    two concurrent callbacks for the same user cannot create duplicates.
    """

    def __init__(self, db: AsyncSession, encryption_key: str):
        self.db = db
        self.encryption_key = encryption_key

    async def store_tokens(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str,
        realm_id: str,
        expires_at: datetime,
    ) -> None:
        values = {
            "user_id": user_id,
            "encrypted_access_token": TokenEncryption.encrypt(
                access_token, self.encryption_key
            ),
            "encrypted_refresh_token": TokenEncryption.encrypt(
                refresh_token, self.encryption_key
            ),
            "realm_id": realm_id,
            "expires_at": expires_at,
        }
        insert = _insert_for(self.db)
        stmt = insert(QuickBooksToken).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[QuickBooksToken.user_id],
            set_={
                "encrypted_access_token": stmt.excluded.encrypted_access_token,
                "encrypted_refresh_token": stmt.excluded.encrypted_refresh_token,
                "realm_id": stmt.excluded.realm_id,
                "expires_at": stmt.excluded.expires_at,
                "updated_at": func.now(),
            },
        )
        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to store QuickBooks tokens for %s: %s", user_id, e)
            raise TokenStoreError(f"Failed to store tokens: {e}")

    async def _get_row(self, user_id: str) -> Optional[QuickBooksToken]:
        try:
            result = await self.db.execute(
                select(QuickBooksToken)
                .where(QuickBooksToken.user_id == user_id)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            raise TokenStoreError(f"Failed to retrieve tokens: {e}")
        return result.scalar_one_or_none()

    async def get_tokens(self, user_id: str) -> Optional[DecryptedTokens]:
        row = await self._get_row(user_id)
        if not row:
            return None
        return DecryptedTokens(
            user_id=row.user_id,
            access_token=TokenEncryption.decrypt(
                row.encrypted_access_token, self.encryption_key
            ),
            refresh_token=TokenEncryption.decrypt(
                row.encrypted_refresh_token, self.encryption_key
            ),
            realm_id=row.realm_id,
            expires_at=normalize_utc(row.expires_at),
            created_at=normalize_utc(row.created_at),
            updated_at=normalize_utc(row.updated_at),
        )

    async def update_tokens(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
    ) -> None:
        stmt = (
            update(QuickBooksToken)
            .where(QuickBooksToken.user_id == user_id)
            .values(
                encrypted_access_token=TokenEncryption.encrypt(
                    access_token, self.encryption_key
                ),
                encrypted_refresh_token=TokenEncryption.encrypt(
                    refresh_token, self.encryption_key
                ),
                expires_at=expires_at,
                updated_at=func.now(),
            )
        )
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise TokenStoreError(f"Failed to update tokens: {e}")
        if result.rowcount == 0:
            raise TokenStoreError(f"No stored tokens for user {user_id}")

    async def delete_tokens(self, user_id: str) -> bool:
        try:
            result = await self.db.execute(
                delete(QuickBooksToken).where(QuickBooksToken.user_id == user_id)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise TokenStoreError(f"Failed to delete tokens: {e}")
        return result.rowcount > 0

    async def has_valid_tokens(self, user_id: str) -> bool:
        try:
            tokens = await self.get_tokens(user_id)
        except Exception as e:
            logger.warning("Token check failed for %s: %s", user_id, e)
            return False
        if not tokens:
            return False
        return not tokens.expires_soon()

    async def cleanup_expired_tokens(self) -> int:
        try:
            result = await self.db.execute(
                delete(QuickBooksToken).where(QuickBooksToken.expires_at < utcnow())
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise TokenStoreError(f"Failed to cleanup expired tokens: {e}")
        removed = result.rowcount or 0
        logger.info("Removed %s expired QuickBooks token rows", removed)
        return removed
