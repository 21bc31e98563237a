"""
Member API Endpoints.

Registration backfills historical dues; deletion removes the member's
debts and payments with it.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, status, Query
from masjid_backend.app.core.dependencies import get_member_service
from masjid_backend.app.models.enums import MemberStatus, DebtStatus, OUTSTANDING_STATUSES
from masjid_backend.app.schemas.member import (
    MemberCreate, MemberUpdate, MemberResponse, MemberRegisteredResponse,
    MemberListResponse, MemberDebtTotalResponse, AuditEntryResponse
)
from masjid_backend.app.schemas.debt import DebtResponse, DebtListResponse
from masjid_backend.app.services.audit import get_audit_trail
from masjid_backend.app.services.member_service import MemberService
from masjid_backend.app.domain.ledger.periods import to_money

router = APIRouter(prefix="/members", tags=["Members"])


@router.post("", response_model=MemberRegisteredResponse, status_code=status.HTTP_201_CREATED)
async def register_member(
    member_data: MemberCreate,
    service: MemberService = Depends(get_member_service)
):
    """
    Register a member.

    Dues are generated from the join month through the current month and
    total_debt is initialized. If the backfill fails the member is still
    created and the error is returned in backfill_error.
    """
    member, report, backfill_error = await service.register_member(member_data)
    response = MemberRegisteredResponse.model_validate(member)
    response.debts_created = report.created if report else 0
    response.backfill_error = backfill_error
    return response


@router.get("", response_model=MemberListResponse)
async def list_members(
    status_filter: Optional[MemberStatus] = Query(None, alias="status"),
    q: Optional[str] = Query(None, max_length=100, description="Search by name or phone"),
    service: MemberService = Depends(get_member_service)
):
    members = await service.list_members(status=status_filter, search=q)
    return MemberListResponse(
        members=[MemberResponse.model_validate(member) for member in members],
        total=len(members)
    )


@router.get("/{member_id}", response_model=MemberResponse)
async def get_member(member_id: int, service: MemberService = Depends(get_member_service)):
    return MemberResponse.model_validate(await service.get_member(member_id))


@router.patch("/{member_id}", response_model=MemberResponse)
async def update_member(
    member_id: int,
    member_data: MemberUpdate,
    service: MemberService = Depends(get_member_service)
):
    """Update member details. Changing monthly_dues only affects future generation."""
    return MemberResponse.model_validate(await service.update_member(member_id, member_data))


@router.delete("/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_member(member_id: int, service: MemberService = Depends(get_member_service)):
    await service.delete_member(member_id)


@router.get("/{member_id}/debts", response_model=DebtListResponse)
async def list_member_debts(
    member_id: int,
    status_filter: Optional[DebtStatus] = Query(None, alias="status"),
    service: MemberService = Depends(get_member_service)
):
    debts = await service.get_member_debts(member_id, status=status_filter)
    outstanding = sum(
        (to_money(debt.amount) for debt in debts if debt.status in OUTSTANDING_STATUSES), to_money(0)
    )
    return DebtListResponse(
        debts=[DebtResponse.model_validate(debt) for debt in debts],
        total=len(debts),
        outstanding_amount=outstanding
    )


@router.post("/{member_id}/recalculate-debt", response_model=MemberDebtTotalResponse)
async def recalculate_member_debt(member_id: int, service: MemberService = Depends(get_member_service)):
    """Recompute total_debt from the member's pending and overdue debts."""
    total = await service.recalculate_debt(member_id)
    return MemberDebtTotalResponse(member_id=member_id, total_debt=total)


@router.get("/{member_id}/audit", response_model=List[AuditEntryResponse])
async def member_audit_trail(
    member_id: int,
    limit: int = Query(50, ge=1, le=200),
    service: MemberService = Depends(get_member_service)
):
    """Most recent audit entries that concern this member."""
    await service.get_member(member_id)
    entries = await get_audit_trail(service.store.db, member_id=member_id, limit=limit)
    return [AuditEntryResponse.model_validate(entry) for entry in entries]
