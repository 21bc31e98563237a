"""
Payment Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from masjid_backend.app.models.enums import AllocationStatus


class PaymentCreate(BaseModel):
    """Schema for recording a payment. month/year default from payment_date."""
    member_id: int
    amount: Decimal = Field(..., gt=0, le=Decimal("9999.99"), decimal_places=2)
    payment_date: date
    month: Optional[int] = Field(None, ge=1, le=12)
    year: Optional[int] = Field(None, ge=1900, le=2100)
    notes: Optional[str] = Field(None, max_length=500)
    receipt_number: Optional[str] = Field(None, max_length=50)


class PaymentUpdate(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0, le=Decimal("9999.99"), decimal_places=2)
    payment_date: Optional[date] = None
    month: Optional[int] = Field(None, ge=1, le=12)
    year: Optional[int] = Field(None, ge=1900, le=2100)
    notes: Optional[str] = Field(None, max_length=500)
    receipt_number: Optional[str] = Field(None, max_length=50)


class AllocationSummary(BaseModel):
    """How the payment was spread over outstanding debts."""
    applied_amount: float
    unapplied_amount: float
    settled_debt_ids: List[int]
    remainder_debt_id: Optional[int] = None
    remainder_amount: float = 0
    total_debt: Optional[float] = None
    total_debt_stale: bool = False


class PaymentResponse(BaseModel):
    """Schema for payment response."""
    id: int
    member_id: int
    amount: float
    payment_date: date
    month: int
    year: int
    notes: Optional[str]
    receipt_number: Optional[str]
    allocation_status: AllocationStatus
    allocation_error: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PaymentRecordedResponse(PaymentResponse):
    allocation: Optional[AllocationSummary] = None


class PaymentListResponse(BaseModel):
    payments: List[PaymentResponse]
    total: int
    total_amount: float
