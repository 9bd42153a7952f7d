from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func

from ...core.database import Base


class QuickBooksToken(Base):
    __tablename__ = "quickbooks_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, unique=True, index=True)
    encrypted_access_token = Column(Text, nullable=False)
    encrypted_refresh_token = Column(Text, nullable=False)
    realm_id = Column(String, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class QuickBooksOAuthState(Base):
    __tablename__ = "quickbooks_oauth_states"

    state = Column(String(128), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
