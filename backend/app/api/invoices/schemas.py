from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class LineItem(BaseModel):
    description: str = ""
    quantity: float = Field(1, ge=0)
    unit_price: float = Field(0, ge=0)
    amount: Optional[float] = None


class InvoiceCreate(BaseModel):
    customer_name: str = Field(..., min_length=1, max_length=255)
    customer_email: Optional[EmailStr] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    line_items: List[LineItem] = Field(default_factory=list)
    tax_rate: Optional[float] = Field(None, ge=0, le=1)
    status: InvoiceStatus = InvoiceStatus.DRAFT
    notes: Optional[str] = None
    terms: Optional[str] = None


class InvoiceUpdate(BaseModel):
    customer_name: Optional[str] = Field(None, min_length=1, max_length=255)
    customer_email: Optional[EmailStr] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    line_items: Optional[List[LineItem]] = None
    tax_rate: Optional[float] = Field(None, ge=0, le=1)
    balance: Optional[float] = Field(None, ge=0)
    status: Optional[InvoiceStatus] = None
    notes: Optional[str] = None
    terms: Optional[str] = None


class InvoiceOut(BaseModel):
    id: str
    team_id: str
    created_by: str
    invoice_number: str
    customer_name: str
    customer_email: Optional[str] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    line_items: List[LineItem]
    subtotal: float
    tax_rate: float
    tax: float
    total_amount: float
    balance: float
    status: InvoiceStatus
    notes: Optional[str] = None
    terms: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class InvoiceTotals(BaseModel):
    line_items: List[LineItem]
    subtotal: float
    tax_rate: float
    tax: float
    total_amount: float
