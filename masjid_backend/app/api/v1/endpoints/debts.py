"""
Debt API Endpoints.
"""

from typing import Optional
from fastapi import APIRouter, Depends, status, Query
from masjid_backend.app.core.dependencies import get_debt_service
from masjid_backend.app.domain.ledger.periods import to_money
from masjid_backend.app.models.enums import DebtStatus, OUTSTANDING_STATUSES
from masjid_backend.app.schemas.debt import DebtCreate, DebtStatusUpdate, DebtResponse, DebtListResponse
from masjid_backend.app.services.debt_service import DebtService

router = APIRouter(prefix="/debts", tags=["Debts"])


@router.post("", response_model=DebtResponse, status_code=status.HTTP_201_CREATED)
async def add_debt(debt_data: DebtCreate, service: DebtService = Depends(get_debt_service)):
    """Add a custom charge or late fee; the member's total is recalculated."""
    return DebtResponse.model_validate(await service.add_debt(debt_data))


@router.get("", response_model=DebtListResponse)
async def list_debts(
    member_id: Optional[int] = Query(None),
    status_filter: Optional[DebtStatus] = Query(None, alias="status"),
    service: DebtService = Depends(get_debt_service)
):
    """List debts ordered by due date (oldest first)."""
    debts = await service.list_debts(member_id=member_id, status=status_filter)
    return DebtListResponse(
        debts=[DebtResponse.model_validate(debt) for debt in debts],
        total=len(debts),
        outstanding_amount=sum(
            (to_money(debt.amount) for debt in debts if debt.status in OUTSTANDING_STATUSES), to_money(0)
        )
    )


@router.patch("/{debt_id}/status", response_model=DebtResponse)
async def update_debt_status(
    debt_id: int,
    status_data: DebtStatusUpdate,
    service: DebtService = Depends(get_debt_service)
):
    """
    Change a debt's status by hand.

    pending -> overdue and pending/overdue -> paid are accepted. Reopening
    a paid debt or moving overdue back to pending returns 409.
    """
    return DebtResponse.model_validate(await service.update_status(debt_id, status_data.status))
