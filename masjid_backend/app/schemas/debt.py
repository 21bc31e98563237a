"""
Debt Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from masjid_backend.app.models.enums import DebtType, DebtStatus


class DebtCreate(BaseModel):
    """Schema for adding a custom charge or late fee to a member."""
    member_id: int
    amount: Decimal = Field(..., gt=0, le=Decimal("99999.99"), decimal_places=2)
    due_date: date
    type: DebtType = DebtType.CUSTOM
    status: DebtStatus = DebtStatus.PENDING
    description: Optional[str] = Field(None, max_length=500)
    month: Optional[int] = Field(None, ge=1, le=12, description="Defaults to the due date's month")
    year: Optional[int] = Field(None, ge=1900, le=2100, description="Defaults to the due date's year")


class DebtStatusUpdate(BaseModel):
    status: DebtStatus


class DebtResponse(BaseModel):
    """Schema for debt response."""
    id: int
    member_id: int
    amount: float
    type: DebtType
    description: Optional[str]
    due_date: date
    status: DebtStatus
    month: int
    year: int
    parent_debt_id: Optional[int]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class DebtListResponse(BaseModel):
    debts: List[DebtResponse]
    total: int
    outstanding_amount: float
