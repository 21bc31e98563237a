"""
Member Pydantic schemas.

Defines request and response models for member management.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from masjid_backend.app.models.enums import MemberStatus

PHONE_PATTERN = r"^\+?[1-9]\d{0,15}$"


class MemberCreate(BaseModel):
    """Schema for registering a member. Omitted dues fall back to the configured default."""
    name: str = Field(..., min_length=2, max_length=100, description="Member name")
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    address: Optional[str] = Field(None, max_length=500)
    status: MemberStatus = MemberStatus.ACTIVE
    join_date: Optional[date] = Field(None, description="Defaults to today")
    monthly_dues: Optional[Decimal] = Field(None, ge=0, le=Decimal("9999.99"), decimal_places=2)


class MemberUpdate(BaseModel):
    """Schema for updating a member. Existing debts are never rewritten."""
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    address: Optional[str] = Field(None, max_length=500)
    status: Optional[MemberStatus] = None
    join_date: Optional[date] = None
    monthly_dues: Optional[Decimal] = Field(None, ge=0, le=Decimal("9999.99"), decimal_places=2)


class MemberResponse(BaseModel):
    """Schema for member response."""
    id: int
    name: str
    phone: Optional[str]
    address: Optional[str]
    status: MemberStatus
    join_date: date
    monthly_dues: float
    total_debt: float
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class MemberRegisteredResponse(MemberResponse):
    """Member plus the outcome of the historical dues backfill."""
    debts_created: int = 0
    backfill_error: Optional[str] = None


class MemberListResponse(BaseModel):
    members: List[MemberResponse]
    total: int


class MemberDebtTotalResponse(BaseModel):
    member_id: int
    total_debt: float


class AuditEntryResponse(BaseModel):
    id: int
    action: str
    entity: Optional[str]
    entity_id: Optional[int]
    source: Optional[str]
    meta_data: Optional[dict]
    timestamp: datetime

    class Config:
        from_attributes = True
