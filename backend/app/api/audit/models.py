from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.sql import func

from ...core.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    team_id = Column(String(36), nullable=True, index=True)
    action = Column(String(64), nullable=False)
    target_id = Column(String(128), nullable=True)
    payload = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
