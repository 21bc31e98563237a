"""
Debt workflows: ad-hoc charges and manual status changes.
"""

import logging
from typing import List, Optional

from masjid_backend.app.core.exceptions import (
    MemberNotFoundError, DebtNotFoundError, InvalidDebtTransitionError
)
from masjid_backend.app.db.record_store import RecordStore
from masjid_backend.app.domain.ledger.ledger_engine import DebtLedgerEngine
from masjid_backend.app.domain.ledger.periods import to_money
from masjid_backend.app.models.debt import Debt
from masjid_backend.app.models.enums import DebtStatus
from masjid_backend.app.schemas.debt import DebtCreate
from masjid_backend.app.services.audit import log_event, AuditAction, AuditSource

logger = logging.getLogger(__name__)

# Paid is terminal and overdue never goes back to pending
ALLOWED_TRANSITIONS = {
    DebtStatus.PENDING: {DebtStatus.OVERDUE, DebtStatus.PAID},
    DebtStatus.OVERDUE: {DebtStatus.PAID},
    DebtStatus.PAID: set(),
}


def check_transition(debt: Debt, requested: DebtStatus) -> bool:
    """
    Validate a manual status change.

    Returns False when the debt already has the requested status (nothing
    to do) and raises InvalidDebtTransitionError for a forbidden move.
    """
    if debt.status == requested:
        return False
    if requested not in ALLOWED_TRANSITIONS[debt.status]:
        raise InvalidDebtTransitionError(debt.id, debt.status.value, requested.value)
    return True


class DebtService:

    def __init__(self, store: RecordStore, engine: DebtLedgerEngine, source: str = AuditSource.API):
        self.store = store
        self.engine = engine
        self.source = source

    async def list_debts(self, member_id: Optional[int] = None, status: Optional[DebtStatus] = None) -> List[Debt]:
        return await self.store.debts.get_all(member_id=member_id, statuses=[status] if status else None)

    async def add_debt(self, data: DebtCreate, client_operation_id: Optional[str] = None) -> Debt:
        """
        Add an ad-hoc debt and refresh the member's total.

        A replayed offline operation passes its client_operation_id; a debt
        already carrying it is returned after a recalculation.
        """
        if client_operation_id:
            existing = await self.store.debts.get_by_client_operation_id(client_operation_id)
            if existing:
                debt_id = existing.id
                logger.info("Debt for operation %s already added as %s", client_operation_id, debt_id)
                await self._recalculate(existing.member_id)
                return await self.store.debts.get_by_id(debt_id)

        if not await self.store.members.get_by_id(data.member_id):
            raise MemberNotFoundError(data.member_id)

        debt = await self.store.debts.create(
            member_id=data.member_id,
            amount=to_money(data.amount),
            type=data.type,
            description=data.description,
            due_date=data.due_date,
            status=data.status,
            month=data.month or data.due_date.month,
            year=data.year or data.due_date.year,
            client_operation_id=client_operation_id,
        )
        await self.store.commit()
        debt_id = debt.id

        await self._recalculate(data.member_id)

        await log_event(
            self.store.db,
            action=AuditAction.DEBT_ADDED,
            member_id=data.member_id,
            entity="debt",
            entity_id=debt_id,
            source=self.source,
            metadata={"amount": str(to_money(data.amount)), "type": data.type.value}
        )
        return await self.store.debts.get_by_id(debt_id)

    async def update_status(self, debt_id: int, status: DebtStatus) -> Debt:
        debt = await self.store.debts.get_by_id(debt_id)
        if not debt:
            raise DebtNotFoundError(debt_id)

        previous = debt.status
        if not check_transition(debt, status):
            return debt

        debt = await self.store.debts.update_status(debt_id, status)
        member_id = debt.member_id
        await self.store.commit()

        await self._recalculate(member_id)

        await log_event(
            self.store.db,
            action=AuditAction.DEBT_STATUS_CHANGED,
            member_id=member_id,
            entity="debt",
            entity_id=debt_id,
            source=self.source,
            metadata={"from": previous.value, "to": status.value}
        )
        logger.info("Debt %s moved from %s to %s", debt_id, previous.value, status.value)
        return await self.store.debts.get_by_id(debt_id)

    async def _recalculate(self, member_id: int) -> None:
        try:
            await self.engine.update_member_total_debt(member_id)
        except Exception:
            await self.store.rollback()
            logger.exception("Failed to update total debt for member %s", member_id)
