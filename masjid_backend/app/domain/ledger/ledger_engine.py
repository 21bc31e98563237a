"""
Debt Ledger Engine (Domain Logic).

Generates dues debts, allocates payments oldest-first, sweeps overdue
debts and keeps each member's cached total_debt in line with its
outstanding debts. Every operation re-reads state from the record store;
nothing is cached between calls.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional

from masjid_backend.app.core.exceptions import MemberNotFoundError, InvalidAmountError
from masjid_backend.app.db.record_store import RecordStore
from masjid_backend.app.models.debt import Debt
from masjid_backend.app.models.member import Member
from masjid_backend.app.models.enums import MemberStatus, DebtStatus, DebtType
from masjid_backend.app.domain.ledger.periods import (
    to_money, due_date_for, iter_periods, dues_description, generation_key
)
from masjid_backend.app.domain.ledger.reports import (
    ZERO,
    GenerationReport,
    AllocationResult,
    OverdueSweepReport,
    MonthlyCycleReport,
    InitializationReport,
)

logger = logging.getLogger(__name__)

PARTIAL_REMAINDER_SUFFIX = " (Partial payment remaining)"


class DebtLedgerEngine:

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.clock = clock

    def _today(self) -> date:
        return self.clock().date()

    async def _ensure_monthly_dues(self, member: Member, year: int, month: int) -> Optional[Debt]:
        """Insert the member's dues debt for a period unless one already exists."""
        existing = await self.store.debts.find_monthly_dues(member.id, month, year)
        if existing:
            return None

        return await self.store.debts.insert_monthly_dues(
            member_id=member.id,
            amount=to_money(member.monthly_dues),
            type=DebtType.MONTHLY_DUES,
            description=dues_description(year, month),
            due_date=due_date_for(year, month),
            status=DebtStatus.PENDING,
            month=month,
            year=year,
            generation_key=generation_key(member.id, year, month),
        )

    async def _recalculate_quietly(self, member_id: int) -> Optional[Decimal]:
        """Recalculate total_debt; a failure is logged and reported as None."""
        try:
            return await self.update_member_total_debt(member_id)
        except Exception:
            await self.store.rollback()
            logger.exception("Failed to update total debt for member %s; total is stale", member_id)
            return None

    async def generate_monthly_debts(self, month: Optional[int] = None, year: Optional[int] = None) -> GenerationReport:
        """
        Create the current period's dues debt for every active member.

        Safe to run any number of times per month. A failure for one member
        is rolled back and recorded in the report; the others continue.
        """
        today = self._today()
        month = month or today.month
        year = year or today.year
        report = GenerationReport(year=year, month=month)

        member_ids = await self.store.members.get_ids(status=MemberStatus.ACTIVE)
        logger.info("Generating monthly dues for %02d/%d across %d active member(s)", month, year, len(member_ids))

        for member_id in member_ids:
            try:
                member = await self.store.members.get_by_id(member_id)
                if member is None or member.status != MemberStatus.ACTIVE or to_money(member.monthly_dues) <= ZERO:
                    report.skipped += 1
                    continue

                debt = await self._ensure_monthly_dues(member, year, month)
                await self.store.commit()
            except Exception as e:
                await self.store.rollback()
                logger.exception("Failed to create monthly debt for member %s", member_id)
                report.failures[member_id] = str(e)
                continue

            if debt:
                report.created_debt_ids.append(debt.id)
                logger.info("Created monthly debt for %s: %s", member.name, debt.amount)
            else:
                report.skipped += 1

        logger.info(
            "Monthly debt generation completed: %d created, %d skipped, %d failed",
            report.created, report.skipped, len(report.failures)
        )
        return report

    async def generate_historical_debts(self, member_id: int) -> GenerationReport:
        """
        Backfill dues from the member's join month through the current month.

        The join month is charged in full. Existing periods are left alone,
        so rerunning only fills gaps.
        """
        member = await self.store.members.get_by_id(member_id)
        if not member:
            raise MemberNotFoundError(member_id)

        report = GenerationReport(member_id=member_id)
        if to_money(member.monthly_dues) > ZERO:
            try:
                for year, month in iter_periods(member.join_date, self._today()):
                    debt = await self._ensure_monthly_dues(member, year, month)
                    if debt:
                        report.created_debt_ids.append(debt.id)
                    else:
                        report.skipped += 1
                await self.store.commit()
            except Exception:
                await self.store.rollback()
                logger.exception("Failed to generate historical debts for member %s", member_id)
                raise

        if report.created:
            logger.info("Created %d historical debt(s) for %s", report.created, member.name)

        report.total_debt = await self._recalculate_quietly(member_id)
        return report

    async def process_payment(self, member_id: int, amount, payment_date: Optional[date] = None) -> AllocationResult:
        """
        Apply a payment against the member's outstanding debts, oldest first.

        Covered debts are marked paid. A debt the payment only partly covers
        is also marked paid and its unpaid part becomes a new pending debt
        with the same due date, type and period. Any amount left after all
        debts are settled is not kept.
        """
        amount = to_money(amount)
        if amount <= ZERO:
            raise InvalidAmountError(amount)

        member = await self.store.members.get_by_id(member_id)
        if not member:
            raise MemberNotFoundError(member_id)

        outstanding = await self.store.debts.get_outstanding(member_id)
        result = AllocationResult(
            member_id=member_id,
            payment_amount=amount,
            outstanding_before=sum((to_money(debt.amount) for debt in outstanding), ZERO),
        )

        remaining = amount
        try:
            for debt in outstanding:
                if remaining <= ZERO:
                    break

                debt_amount = to_money(debt.amount)
                await self.store.debts.update_status(debt.id, DebtStatus.PAID)
                result.settled_debt_ids.append(debt.id)

                if remaining >= debt_amount:
                    remaining -= debt_amount
                    continue

                remainder = await self.store.debts.create(
                    member_id=debt.member_id,
                    amount=debt_amount - remaining,
                    type=debt.type,
                    description=f"{debt.description or ''}{PARTIAL_REMAINDER_SUFFIX}".strip(),
                    due_date=debt.due_date,
                    status=DebtStatus.PENDING,
                    month=debt.month,
                    year=debt.year,
                    parent_debt_id=debt.id,
                )
                result.remainder_debt_id = remainder.id
                result.remainder_amount = debt_amount - remaining
                remaining = ZERO

            await self.store.commit()
        except Exception:
            await self.store.rollback()
            logger.exception("Failed to process payment for member %s", member_id)
            raise

        result.applied_amount = amount - remaining
        result.unapplied_amount = remaining
        if remaining > ZERO:
            logger.warning(
                "Payment of %s for member %s exceeded outstanding debt; %s was not applied",
                amount, member_id, remaining
            )

        result.total_debt = await self._recalculate_quietly(member_id)
        result.total_debt_stale = result.total_debt is None

        logger.info("Payment processed: %s for member %s (paid on %s)", amount, member_id, payment_date)
        return result

    async def update_member_total_debt(self, member_id: int) -> Decimal:
        """Recompute and persist total_debt as the sum of pending and overdue debts."""
        member = await self.store.members.get_by_id(member_id)
        if not member:
            raise MemberNotFoundError(member_id)

        outstanding = await self.store.debts.get_outstanding(member_id)
        total = sum((to_money(debt.amount) for debt in outstanding), ZERO)

        await self.store.members.update(member_id, total_debt=total)
        await self.store.commit()
        return total

    async def update_overdue_debts(self) -> OverdueSweepReport:
        """Move pending debts whose due date has passed to overdue."""
        now = self.clock()
        report = OverdueSweepReport(checked_at=now)

        try:
            for debt in await self.store.debts.get_pending_due_before(now):
                await self.store.debts.update_status(debt.id, DebtStatus.OVERDUE)
                report.transitioned_debt_ids.append(debt.id)
                report.member_ids.add(debt.member_id)
            await self.store.commit()
        except Exception:
            await self.store.rollback()
            logger.exception("Failed to update overdue debts")
            raise

        if report.transitioned:
            logger.info("Marked %d debt(s) as overdue", report.transitioned)
        return report

    async def schedule_monthly_debt_generation(self) -> MonthlyCycleReport:
        """
        Monthly cycle: generate current dues, sweep overdue debts, then
        recalculate every member's total. No single failure stops the cycle.
        """
        report = MonthlyCycleReport()

        try:
            report.generation = await self.generate_monthly_debts()
        except Exception as e:
            await self.store.rollback()
            logger.exception("Monthly debt generation step failed")
            report.step_errors["generation"] = str(e)

        try:
            report.sweep = await self.update_overdue_debts()
        except Exception as e:
            report.step_errors["overdue_sweep"] = str(e)

        try:
            member_ids = await self.store.members.get_ids()
        except Exception as e:
            await self.store.rollback()
            logger.exception("Could not load members for recalculation")
            report.step_errors["recalculation"] = str(e)
            return report

        for member_id in member_ids:
            try:
                report.recalculated[member_id] = await self.update_member_total_debt(member_id)
            except Exception as e:
                await self.store.rollback()
                logger.exception("Failed to recalculate total debt for member %s", member_id)
                report.recalculation_failures[member_id] = str(e)

        logger.info(
            "Monthly debt cycle completed: %d member total(s) updated, %d failure(s)",
            len(report.recalculated), len(report.recalculation_failures) + len(report.step_errors)
        )
        return report

    async def initialize_debt_system(self) -> InitializationReport:
        """Backfill historical dues for every active member."""
        report = InitializationReport()
        member_ids = await self.store.members.get_ids(status=MemberStatus.ACTIVE)
        logger.info("Initializing debt system for %d active member(s)", len(member_ids))

        for member_id in member_ids:
            try:
                report.members[member_id] = await self.generate_historical_debts(member_id)
            except Exception as e:
                await self.store.rollback()
                report.failures[member_id] = str(e)

        logger.info("Debt system initialization completed: %d debt(s) created", report.created)
        return report
