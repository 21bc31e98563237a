"""
Member workflows.

Registration backfills historical dues; every change that can move a
member's outstanding total goes back through the ledger engine.
"""

import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from masjid_backend.app.core.config import settings
from masjid_backend.app.core.exceptions import MemberNotFoundError
from masjid_backend.app.db.record_store import RecordStore
from masjid_backend.app.domain.ledger.ledger_engine import DebtLedgerEngine
from masjid_backend.app.domain.ledger.periods import to_money
from masjid_backend.app.domain.ledger.reports import GenerationReport
from masjid_backend.app.models.debt import Debt
from masjid_backend.app.models.member import Member
from masjid_backend.app.models.enums import MemberStatus, DebtStatus
from masjid_backend.app.schemas.member import MemberCreate, MemberUpdate
from masjid_backend.app.services.audit import log_event, AuditAction, AuditSource

logger = logging.getLogger(__name__)


class MemberService:

    def __init__(self, store: RecordStore, engine: DebtLedgerEngine, source: str = AuditSource.API):
        self.store = store
        self.engine = engine
        self.source = source

    async def list_members(self, status: Optional[MemberStatus] = None, search: Optional[str] = None) -> List[Member]:
        return await self.store.members.get_all(status=status, search=search)

    async def get_member(self, member_id: int) -> Member:
        member = await self.store.members.get_by_id(member_id)
        if not member:
            raise MemberNotFoundError(member_id)
        return member

    async def get_member_debts(self, member_id: int, status: Optional[DebtStatus] = None) -> List[Debt]:
        await self.get_member(member_id)
        return await self.store.debts.get_all(member_id=member_id, statuses=[status] if status else None)

    async def _backfill(self, member_id: int) -> Tuple[Optional[GenerationReport], Optional[str]]:
        try:
            return await self.engine.generate_historical_debts(member_id), None
        except Exception as e:
            logger.exception("Failed to generate historical debts for new member %s", member_id)
            return None, str(e)

    async def register_member(
        self, data: MemberCreate, client_operation_id: Optional[str] = None
    ) -> Tuple[Member, Optional[GenerationReport], Optional[str]]:
        """
        Create a member and backfill dues from the join month to today.

        A backfill failure does not undo the registration; it is returned
        as the third element so the caller can surface it.

        A replayed offline operation passes its client_operation_id. When a
        member already carries it, only the backfill runs again, which
        fills any periods an interrupted run missed.
        """
        if client_operation_id:
            existing = await self.store.members.get_by_client_operation_id(client_operation_id)
            if existing:
                member_id = existing.id
                logger.info("Member for operation %s already registered as %s", client_operation_id, member_id)
                report, backfill_error = await self._backfill(member_id)
                return await self.get_member(member_id), report, backfill_error

        member = await self.store.members.create(
            name=data.name,
            phone=data.phone,
            address=data.address,
            status=data.status,
            join_date=data.join_date or self.engine.clock().date(),
            monthly_dues=to_money(data.monthly_dues if data.monthly_dues is not None else settings.default_monthly_dues),
            total_debt=Decimal("0.00"),
            client_operation_id=client_operation_id,
        )
        await self.store.commit()
        member_id = member.id

        report, backfill_error = await self._backfill(member_id)

        member = await self.get_member(member_id)
        await log_event(
            self.store.db,
            action=AuditAction.MEMBER_REGISTERED,
            member_id=member_id,
            entity="member",
            entity_id=member_id,
            source=self.source,
            metadata={
                "name": member.name,
                "monthly_dues": str(member.monthly_dues),
                "debts_created": report.created if report else 0,
                "backfill_error": backfill_error,
            }
        )
        logger.info("Registered member %s (%s)", member_id, member.name)
        return member, report, backfill_error

    async def update_member(self, member_id: int, data: MemberUpdate) -> Member:
        changes = data.model_dump(exclude_unset=True)
        if "monthly_dues" in changes and changes["monthly_dues"] is not None:
            changes["monthly_dues"] = to_money(changes["monthly_dues"])

        await self.store.members.update(member_id, **changes)
        await self.store.commit()

        # New dues only apply to future generation; the total is refreshed in place
        if "monthly_dues" in changes:
            try:
                await self.engine.update_member_total_debt(member_id)
            except Exception:
                await self.store.rollback()
                logger.exception("Failed to update total debt for member %s after edit", member_id)

        await log_event(
            self.store.db,
            action=AuditAction.MEMBER_UPDATED,
            member_id=member_id,
            entity="member",
            entity_id=member_id,
            source=self.source,
            metadata={"updated_fields": list(changes.keys())}
        )
        return await self.get_member(member_id)

    async def delete_member(self, member_id: int) -> None:
        """Delete a member along with all of its debts and payments."""
        await self.store.members.delete(member_id)
        await self.store.commit()

        await log_event(
            self.store.db,
            action=AuditAction.MEMBER_DELETED,
            member_id=member_id,
            entity="member",
            entity_id=member_id,
            source=self.source,
        )
        logger.info("Deleted member %s with its debts and payments", member_id)

    async def recalculate_debt(self, member_id: int) -> Decimal:
        total = await self.engine.update_member_total_debt(member_id)
        await log_event(
            self.store.db,
            action=AuditAction.MEMBER_DEBT_RECALCULATED,
            member_id=member_id,
            entity="member",
            entity_id=member_id,
            source=self.source,
            metadata={"total_debt": str(total)}
        )
        return total
