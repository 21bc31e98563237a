"""
Payment workflows.

Recording a payment stores it first and then allocates it against the
member's outstanding debts. When allocation fails the payment stays on
record with allocation_status FAILED rather than disappearing.
"""

import logging
from typing import List, Optional, Tuple

from masjid_backend.app.core.exceptions import MemberNotFoundError, PaymentNotFoundError
from masjid_backend.app.db.record_store import RecordStore
from masjid_backend.app.domain.ledger.ledger_engine import DebtLedgerEngine
from masjid_backend.app.domain.ledger.periods import to_money
from masjid_backend.app.domain.ledger.reports import ZERO, AllocationResult
from masjid_backend.app.models.payment import Payment
from masjid_backend.app.models.enums import AllocationStatus
from masjid_backend.app.schemas.payment import PaymentCreate, PaymentUpdate
from masjid_backend.app.services.audit import log_event, AuditAction, AuditSource

logger = logging.getLogger(__name__)


class PaymentService:

    def __init__(self, store: RecordStore, engine: DebtLedgerEngine, source: str = AuditSource.API):
        self.store = store
        self.engine = engine
        self.source = source

    async def list_payments(
        self,
        member_id: Optional[int] = None,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> List[Payment]:
        return await self.store.payments.get_all(member_id=member_id, month=month, year=year)

    async def get_payment(self, payment_id: int) -> Payment:
        payment = await self.store.payments.get_by_id(payment_id)
        if not payment:
            raise PaymentNotFoundError(payment_id)
        return payment

    async def _allocate(self, payment_id: int, member_id: int, amount, payment_date) -> Optional[AllocationResult]:
        """
        Run allocation and stamp the outcome on the payment row.

        The ALLOCATED stamp is flushed first so it commits in the same
        transaction as the settled debts. A payment still PENDING was
        therefore never applied.
        """
        await self.store.payments.update(
            payment_id, allocation_status=AllocationStatus.ALLOCATED, allocation_error=None
        )
        try:
            return await self.engine.process_payment(member_id, amount, payment_date)
        except Exception as e:
            await self.store.rollback()
            logger.exception("Allocation failed for payment %s", payment_id)
            error = str(e)

        # Allocation did not happen; keep the cached total honest at least
        try:
            await self.engine.update_member_total_debt(member_id)
        except Exception:
            await self.store.rollback()
            logger.exception("Fallback recalculation failed for member %s", member_id)

        await self.store.payments.update(
            payment_id, allocation_status=AllocationStatus.FAILED, allocation_error=error
        )
        await self.store.commit()

        await log_event(
            self.store.db,
            action=AuditAction.PAYMENT_ALLOCATION_FAILED,
            member_id=member_id,
            entity="payment",
            entity_id=payment_id,
            source=self.source,
            metadata={"error": error}
        )
        return None

    async def record_payment(
        self, data: PaymentCreate, client_operation_id: Optional[str] = None
    ) -> Tuple[Payment, Optional[AllocationResult]]:
        """
        Store a payment, then apply it to the member's debts oldest first.

        Returns the stored payment and the allocation result (None when
        allocation failed; the payment carries the error).

        A replayed offline operation passes its client_operation_id. When a
        payment already carries it, that payment is returned and only
        allocated if its allocation never committed.
        """
        if client_operation_id:
            existing = await self.store.payments.get_by_client_operation_id(client_operation_id)
            if existing:
                logger.info("Payment for operation %s already recorded as %s", client_operation_id, existing.id)
                result = None
                if existing.allocation_status == AllocationStatus.PENDING:
                    result = await self._allocate(
                        existing.id, existing.member_id, existing.amount, existing.payment_date
                    )
                return await self.get_payment(existing.id), result

        if not await self.store.members.get_by_id(data.member_id):
            raise MemberNotFoundError(data.member_id)

        payment = await self.store.payments.create(
            member_id=data.member_id,
            amount=to_money(data.amount),
            payment_date=data.payment_date,
            month=data.month or data.payment_date.month,
            year=data.year or data.payment_date.year,
            notes=data.notes,
            receipt_number=data.receipt_number,
            allocation_status=AllocationStatus.PENDING,
            client_operation_id=client_operation_id,
        )
        await self.store.commit()
        payment_id = payment.id

        result = await self._allocate(payment_id, data.member_id, data.amount, data.payment_date)

        payment = await self.get_payment(payment_id)
        await log_event(
            self.store.db,
            action=AuditAction.PAYMENT_RECORDED,
            member_id=data.member_id,
            entity="payment",
            entity_id=payment_id,
            source=self.source,
            metadata={
                "amount": str(payment.amount),
                "applied_amount": str(result.applied_amount) if result else None,
                "unapplied_amount": str(result.unapplied_amount) if result else None,
                "receipt_number": payment.receipt_number,
            }
        )
        return payment, result

    async def update_payment(self, payment_id: int, data: PaymentUpdate) -> Tuple[Payment, Optional[AllocationResult]]:
        """
        Update a payment.

        An increased amount allocates only the difference. Settled debts
        cannot be reopened, so a decreased amount only refreshes the total.
        """
        payment = await self.get_payment(payment_id)
        member_id = payment.member_id
        old_amount = to_money(payment.amount)

        changes = data.model_dump(exclude_unset=True)
        if changes.get("amount") is not None:
            changes["amount"] = to_money(changes["amount"])

        payment = await self.store.payments.update(payment_id, **changes)
        await self.store.commit()
        payment_date = payment.payment_date

        result = None
        if changes.get("amount") is not None:
            delta = changes["amount"] - old_amount
            # Only the difference is allocated; re-running allocation with the
            # full amount would settle debts the previous amount already paid
            if delta > ZERO:
                result = await self._allocate(payment_id, member_id, delta, payment_date)
            elif delta < ZERO:
                logger.warning(
                    "Payment %s reduced by %s; settled debts are not reopened", payment_id, -delta
                )
                await self._recalculate(member_id)

        await log_event(
            self.store.db,
            action=AuditAction.PAYMENT_UPDATED,
            member_id=member_id,
            entity="payment",
            entity_id=payment_id,
            source=self.source,
            metadata={"updated_fields": list(changes.keys()), "previous_amount": str(old_amount)}
        )
        return await self.get_payment(payment_id), result

    async def delete_payment(self, payment_id: int) -> None:
        """Delete a payment. Debts it settled stay paid; the total is recalculated."""
        payment = await self.store.payments.delete(payment_id)
        member_id = payment.member_id
        amount = str(payment.amount)
        await self.store.commit()

        await self._recalculate(member_id)

        await log_event(
            self.store.db,
            action=AuditAction.PAYMENT_DELETED,
            member_id=member_id,
            entity="payment",
            entity_id=payment_id,
            source=self.source,
            metadata={"amount": amount}
        )

    async def _recalculate(self, member_id: int) -> None:
        try:
            await self.engine.update_member_total_debt(member_id)
        except Exception:
            await self.store.rollback()
            logger.exception("Failed to recalculate total debt for member %s", member_id)
