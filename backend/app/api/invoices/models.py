import uuid

from sqlalchemy import Column, String, Date, DateTime, JSON, Numeric, Text, ForeignKey, Index
from sqlalchemy.sql import func

from ...core.database import Base


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=False, index=True)
    created_by = Column(String(64), nullable=False)
    invoice_number = Column(String(32), nullable=False)
    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=True)
    invoice_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    line_items = Column(JSON, nullable=False, default=list)
    subtotal = Column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    tax_rate = Column(Numeric(6, 4, asdecimal=False), nullable=False, default=0)
    tax = Column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    balance = Column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="draft")
    notes = Column(Text, nullable=True)
    terms = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_invoices_team_number", "team_id", "invoice_number", unique=True),
    )
