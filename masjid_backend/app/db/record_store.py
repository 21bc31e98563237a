"""
Record Store query interface.

Thin async query objects over members, debts and payments. The ledger
engine and the services only talk to the database through this module.
"""

from datetime import date, datetime, time
from typing import Iterable, List, Optional

from sqlalchemy import select, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from masjid_backend.app.core.exceptions import (
    MemberNotFoundError, DebtNotFoundError, PaymentNotFoundError
)
from masjid_backend.app.models.member import Member
from masjid_backend.app.models.debt import Debt
from masjid_backend.app.models.payment import Payment
from masjid_backend.app.models.enums import (
    MemberStatus, DebtStatus, DebtType, OUTSTANDING_STATUSES
)


class MemberQueries:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_all(self, status: Optional[MemberStatus] = None, search: Optional[str] = None) -> List[Member]:
        query = select(Member)
        if status:
            query = query.where(Member.status == status)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(Member.name.ilike(pattern), Member.phone.ilike(pattern)))
        result = await self.db.execute(query.order_by(Member.name, Member.id))
        return list(result.scalars().all())

    async def get_ids(self, status: Optional[MemberStatus] = None) -> List[int]:
        query = select(Member.id)
        if status:
            query = query.where(Member.status == status)
        result = await self.db.execute(query.order_by(Member.id))
        return list(result.scalars().all())

    async def get_by_id(self, member_id: int) -> Optional[Member]:
        result = await self.db.execute(select(Member).where(Member.id == member_id))
        return result.scalar_one_or_none()

    async def get_by_client_operation_id(self, client_operation_id: str) -> Optional[Member]:
        result = await self.db.execute(select(Member).where(Member.client_operation_id == client_operation_id))
        return result.scalar_one_or_none()

    async def create(self, **fields) -> Member:
        member = Member(**fields)
        self.db.add(member)
        await self.db.flush()
        return member

    async def update(self, member_id: int, **changes) -> Member:
        member = await self.get_by_id(member_id)
        if not member:
            raise MemberNotFoundError(member_id)
        for field, value in changes.items():
            setattr(member, field, value)
        await self.db.flush()
        return member

    async def delete(self, member_id: int) -> None:
        """Delete a member together with its payments and debts."""
        member = await self.get_by_id(member_id)
        if not member:
            raise MemberNotFoundError(member_id)
        await self.db.execute(delete(Payment).where(Payment.member_id == member_id))
        await self.db.execute(delete(Debt).where(Debt.member_id == member_id))
        await self.db.delete(member)
        await self.db.flush()


class DebtQueries:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_all(
        self,
        member_id: Optional[int] = None,
        statuses: Optional[Iterable[DebtStatus]] = None,
    ) -> List[Debt]:
        query = select(Debt)
        if member_id is not None:
            query = query.where(Debt.member_id == member_id)
        if statuses:
            query = query.where(Debt.status.in_(list(statuses)))
        result = await self.db.execute(query.order_by(Debt.due_date, Debt.id))
        return list(result.scalars().all())

    async def get_by_id(self, debt_id: int) -> Optional[Debt]:
        result = await self.db.execute(select(Debt).where(Debt.id == debt_id))
        return result.scalar_one_or_none()

    async def get_by_client_operation_id(self, client_operation_id: str) -> Optional[Debt]:
        result = await self.db.execute(select(Debt).where(Debt.client_operation_id == client_operation_id))
        return result.scalar_one_or_none()

    async def get_outstanding(self, member_id: int) -> List[Debt]:
        """Pending and overdue debts, oldest due date first, ties by id."""
        return await self.get_all(member_id=member_id, statuses=OUTSTANDING_STATUSES)

    async def find_monthly_dues(self, member_id: int, month: int, year: int) -> Optional[Debt]:
        result = await self.db.execute(
            select(Debt).where(
                Debt.member_id == member_id,
                Debt.type == DebtType.MONTHLY_DUES,
                Debt.month == month,
                Debt.year == year,
            ).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_pending_due_before(self, moment: datetime) -> List[Debt]:
        """
        Pending debts whose due date is strictly before the given moment.

        A due date is a calendar day and starts at midnight, so a debt due
        today is already past once the day has begun.
        """
        cutoff: date = moment.date()
        if moment.time() == time.min:
            query = select(Debt).where(Debt.due_date < cutoff)
        else:
            query = select(Debt).where(Debt.due_date <= cutoff)
        result = await self.db.execute(
            query.where(Debt.status == DebtStatus.PENDING).order_by(Debt.due_date, Debt.id)
        )
        return list(result.scalars().all())

    async def create(self, **fields) -> Debt:
        debt = Debt(**fields)
        self.db.add(debt)
        await self.db.flush()
        return debt

    async def insert_monthly_dues(self, **fields) -> Optional[Debt]:
        """
        Insert a generated dues record inside a savepoint.

        Returns None when the unique generation_key already exists, i.e. a
        concurrent generation run won the race.
        """
        try:
            async with self.db.begin_nested():
                debt = Debt(**fields)
                self.db.add(debt)
                await self.db.flush()
        except IntegrityError:
            return None
        return debt

    async def update_status(self, debt_id: int, status: DebtStatus) -> Debt:
        debt = await self.get_by_id(debt_id)
        if not debt:
            raise DebtNotFoundError(debt_id)
        debt.status = status
        await self.db.flush()
        return debt


class PaymentQueries:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_all(
        self,
        member_id: Optional[int] = None,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> List[Payment]:
        query = select(Payment)
        if member_id is not None:
            query = query.where(Payment.member_id == member_id)
        if month is not None:
            query = query.where(Payment.month == month)
        if year is not None:
            query = query.where(Payment.year == year)
        result = await self.db.execute(query.order_by(Payment.payment_date.desc(), Payment.id.desc()))
        return list(result.scalars().all())

    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        result = await self.db.execute(select(Payment).where(Payment.id == payment_id))
        return result.scalar_one_or_none()

    async def get_by_client_operation_id(self, client_operation_id: str) -> Optional[Payment]:
        result = await self.db.execute(select(Payment).where(Payment.client_operation_id == client_operation_id))
        return result.scalar_one_or_none()

    async def create(self, **fields) -> Payment:
        payment = Payment(**fields)
        self.db.add(payment)
        await self.db.flush()
        return payment

    async def update(self, payment_id: int, **changes) -> Payment:
        payment = await self.get_by_id(payment_id)
        if not payment:
            raise PaymentNotFoundError(payment_id)
        for field, value in changes.items():
            setattr(payment, field, value)
        await self.db.flush()
        return payment

    async def delete(self, payment_id: int) -> Payment:
        payment = await self.get_by_id(payment_id)
        if not payment:
            raise PaymentNotFoundError(payment_id)
        await self.db.delete(payment)
        await self.db.flush()
        return payment


class RecordStore:
    """Groups the query objects around one session and owns its transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.members = MemberQueries(db)
        self.debts = DebtQueries(db)
        self.payments = PaymentQueries(db)

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()
