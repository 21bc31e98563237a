"""
Payment API Endpoints.

Recording a payment allocates it against the member's debts oldest
first. A stored payment whose allocation failed is still a 201; the
response carries allocation_status "failed" and the error.
"""

from typing import Optional
from fastapi import APIRouter, Depends, status, Query
from masjid_backend.app.core.dependencies import get_payment_service
from masjid_backend.app.domain.ledger.periods import to_money
from masjid_backend.app.schemas.payment import (
    PaymentCreate, PaymentUpdate, PaymentResponse, PaymentRecordedResponse,
    PaymentListResponse, AllocationSummary
)
from masjid_backend.app.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["Payments"])


def _recorded(payment, result) -> PaymentRecordedResponse:
    response = PaymentRecordedResponse.model_validate(payment)
    if result is not None:
        response.allocation = AllocationSummary.model_validate(result, from_attributes=True)
    return response


@router.post("", response_model=PaymentRecordedResponse, status_code=status.HTTP_201_CREATED)
async def record_payment(
    payment_data: PaymentCreate,
    service: PaymentService = Depends(get_payment_service)
):
    payment, result = await service.record_payment(payment_data)
    return _recorded(payment, result)


@router.get("", response_model=PaymentListResponse)
async def list_payments(
    member_id: Optional[int] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1900, le=2100),
    service: PaymentService = Depends(get_payment_service)
):
    """List payments, newest first."""
    payments = await service.list_payments(member_id=member_id, month=month, year=year)
    return PaymentListResponse(
        payments=[PaymentResponse.model_validate(payment) for payment in payments],
        total=len(payments),
        total_amount=sum((to_money(payment.amount) for payment in payments), to_money(0))
    )


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(payment_id: int, service: PaymentService = Depends(get_payment_service)):
    return PaymentResponse.model_validate(await service.get_payment(payment_id))


@router.patch("/{payment_id}", response_model=PaymentRecordedResponse)
async def update_payment(
    payment_id: int,
    payment_data: PaymentUpdate,
    service: PaymentService = Depends(get_payment_service)
):
    """
    Update a payment.

    Raising the amount allocates the difference; lowering it does not
    reopen debts that were already settled.
    """
    payment, result = await service.update_payment(payment_id, payment_data)
    return _recorded(payment, result)


@router.delete("/{payment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_payment(payment_id: int, service: PaymentService = Depends(get_payment_service)):
    await service.delete_payment(payment_id)
