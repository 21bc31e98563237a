"""Background scheduler for the monthly debt cycle and the daily overdue sweep."""

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from masjid_backend.app.core.config import settings
from masjid_backend.app.db.record_store import RecordStore
from masjid_backend.app.domain.ledger.ledger_engine import DebtLedgerEngine
from masjid_backend.app.domain.ledger.reports import MonthlyCycleReport, OverdueSweepReport
from masjid_backend.app.services.audit import log_event, AuditAction, AuditSource

logger = logging.getLogger(__name__)

MONTHLY_CYCLE_JOB_ID = "monthly_debt_cycle"
OVERDUE_SWEEP_JOB_ID = "daily_overdue_sweep"


class DebtScheduler:
    """
    Owns an AsyncIOScheduler with two cron jobs.

    Each run opens its own session; an exception is logged and the next
    run goes ahead as scheduled.
    """

    def __init__(self, session_factory, clock: Callable[[], datetime] = datetime.now):
        self.session_factory = session_factory
        self.clock = clock
        self.scheduler: Optional[AsyncIOScheduler] = None

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def run_monthly_cycle(self) -> Optional[MonthlyCycleReport]:
        try:
            async with self.session_factory() as db:
                engine = DebtLedgerEngine(RecordStore(db), clock=self.clock)
                report = await engine.schedule_monthly_debt_generation()
                await log_event(
                    db,
                    action=AuditAction.MONTHLY_CYCLE_COMPLETED,
                    source=AuditSource.SCHEDULER,
                    metadata={
                        "created": report.generation.created if report.generation else 0,
                        "overdue": report.sweep.transitioned if report.sweep else 0,
                        "recalculated": len(report.recalculated),
                        "failures": len(report.recalculation_failures) + len(report.step_errors),
                    }
                )
                return report
        except Exception:
            logger.exception("Scheduled monthly debt cycle failed")
            return None

    async def run_overdue_sweep(self) -> Optional[OverdueSweepReport]:
        try:
            async with self.session_factory() as db:
                engine = DebtLedgerEngine(RecordStore(db), clock=self.clock)
                report = await engine.update_overdue_debts()
                for member_id in sorted(report.member_ids):
                    try:
                        await engine.update_member_total_debt(member_id)
                    except Exception:
                        await db.rollback()
                        logger.exception("Failed to update total debt for member %s after sweep", member_id)
                if report.transitioned:
                    await log_event(
                        db,
                        action=AuditAction.OVERDUE_SWEEP_COMPLETED,
                        source=AuditSource.SCHEDULER,
                        metadata={"transitioned_debt_ids": report.transitioned_debt_ids}
                    )
                return report
        except Exception:
            logger.exception("Scheduled overdue sweep failed")
            return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Register both jobs and start the scheduler (no-op when already running)."""
        if self.scheduler and self.scheduler.running:
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.run_monthly_cycle,
            trigger=CronTrigger(
                day=settings.debt_generation_day,
                hour=settings.debt_generation_hour,
                minute=0,
            ),
            id=MONTHLY_CYCLE_JOB_ID,
            name="Generate monthly dues and recalculate totals",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self.run_overdue_sweep,
            trigger=CronTrigger(hour=settings.overdue_sweep_hour, minute=0),
            id=OVERDUE_SWEEP_JOB_ID,
            name="Mark past-due debts overdue",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(
            "Debt scheduler started: monthly cycle on day %d at %02d:00, overdue sweep daily at %02d:00",
            settings.debt_generation_day, settings.debt_generation_hour, settings.overdue_sweep_hour
        )

    async def stop(self) -> None:
        """
        Shut the scheduler down and forget it, so a later start() builds a
        fresh one. Newer APScheduler releases queue the shutdown on the event
        loop; yielding once lets it run before the caller moves on.
        """
        scheduler, self.scheduler = self.scheduler, None
        if scheduler and scheduler.running:
            scheduler.shutdown(wait=False)
            await asyncio.sleep(0)
            logger.info("Debt scheduler stopped")

    @property
    def running(self) -> bool:
        return bool(self.scheduler and self.scheduler.running)

    def jobs(self) -> List[dict]:
        if not self.scheduler:
            return []
        return [
            {
                "id": job.id,
                "trigger": str(job.trigger),
                "next_run_time": getattr(job, "next_run_time", None),
            }
            for job in self.scheduler.get_jobs()
        ]
