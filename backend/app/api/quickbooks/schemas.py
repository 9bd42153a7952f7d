from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class CustomerCreate(BaseModel):
    DisplayName: Optional[str] = None
    PrimaryEmailAddr: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="allow")


class ItemCreate(BaseModel):
    Name: Optional[str] = None
    Type: Optional[str] = None
    UnitPrice: Optional[float] = None
    IncomeAccountRef: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="allow")


class SendInvoiceRequest(BaseModel):
    email: EmailStr = Field(..., alias="emailAddress")

    model_config = ConfigDict(populate_by_name=True)
