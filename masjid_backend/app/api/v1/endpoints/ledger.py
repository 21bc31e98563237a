"""
Ledger administration endpoints.

Manual triggers for the jobs the scheduler normally runs, plus the
one-off historical backfill.
"""

from typing import Optional
from fastapi import APIRouter, Depends
from masjid_backend.app.core.dependencies import get_ledger_engine, get_debt_scheduler
from masjid_backend.app.domain.ledger.ledger_engine import DebtLedgerEngine
from masjid_backend.app.domain.ledger.reports import GenerationReport, OverdueSweepReport
from masjid_backend.app.schemas.ledger import (
    GenerateMonthlyRequest, GenerationReportResponse, OverdueSweepResponse,
    MonthlyCycleResponse, InitializationResponse, SchedulerStatusResponse, ScheduledJobResponse
)
from masjid_backend.app.services.audit import log_event, AuditAction
from masjid_backend.app.services.scheduler import DebtScheduler

router = APIRouter(prefix="/ledger", tags=["Ledger"])


def _generation(report: GenerationReport) -> GenerationReportResponse:
    return GenerationReportResponse(
        year=report.year,
        month=report.month,
        member_id=report.member_id,
        created=report.created,
        created_debt_ids=report.created_debt_ids,
        skipped=report.skipped,
        failures=report.failures,
        total_debt=report.total_debt,
    )


def _sweep(report: OverdueSweepReport) -> OverdueSweepResponse:
    return OverdueSweepResponse(
        checked_at=report.checked_at,
        transitioned=report.transitioned,
        transitioned_debt_ids=report.transitioned_debt_ids,
        member_ids=sorted(report.member_ids),
    )


@router.post("/initialize", response_model=InitializationResponse)
async def initialize_debt_system(engine: DebtLedgerEngine = Depends(get_ledger_engine)):
    """Backfill historical dues for every active member. Safe to rerun."""
    report = await engine.initialize_debt_system()
    await log_event(
        engine.store.db,
        action=AuditAction.DEBT_SYSTEM_INITIALIZED,
        metadata={"created": report.created, "failures": len(report.failures)}
    )
    return InitializationResponse(
        ok=report.ok,
        created=report.created,
        members={member_id: _generation(item) for member_id, item in report.members.items()},
        failures=report.failures,
    )


@router.post("/generate-monthly", response_model=GenerationReportResponse)
async def generate_monthly_debts(
    period: Optional[GenerateMonthlyRequest] = None,
    engine: DebtLedgerEngine = Depends(get_ledger_engine)
):
    """Generate dues for the given (or current) month. Existing periods are skipped."""
    period = period or GenerateMonthlyRequest()
    report = await engine.generate_monthly_debts(month=period.month, year=period.year)
    await log_event(
        engine.store.db,
        action=AuditAction.MONTHLY_DEBTS_GENERATED,
        metadata={"month": report.month, "year": report.year, "created": report.created}
    )
    return _generation(report)


@router.post("/update-overdue", response_model=OverdueSweepResponse)
async def update_overdue_debts(engine: DebtLedgerEngine = Depends(get_ledger_engine)):
    """Mark past-due pending debts overdue."""
    report = await engine.update_overdue_debts()
    await log_event(
        engine.store.db,
        action=AuditAction.OVERDUE_SWEEP_COMPLETED,
        metadata={"transitioned_debt_ids": report.transitioned_debt_ids}
    )
    return _sweep(report)


@router.post("/run-monthly-cycle", response_model=MonthlyCycleResponse)
async def run_monthly_cycle(engine: DebtLedgerEngine = Depends(get_ledger_engine)):
    """Generate this month's dues, sweep overdue debts and recalculate every total."""
    report = await engine.schedule_monthly_debt_generation()
    await log_event(
        engine.store.db,
        action=AuditAction.MONTHLY_CYCLE_COMPLETED,
        metadata={"ok": report.ok, "recalculated": len(report.recalculated)}
    )
    return MonthlyCycleResponse(
        ok=report.ok,
        generation=_generation(report.generation) if report.generation else None,
        sweep=_sweep(report.sweep) if report.sweep else None,
        recalculated=report.recalculated,
        recalculation_failures=report.recalculation_failures,
        step_errors=report.step_errors,
    )


@router.get("/scheduler", response_model=SchedulerStatusResponse)
async def scheduler_status(scheduler: Optional[DebtScheduler] = Depends(get_debt_scheduler)):
    if scheduler is None:
        return SchedulerStatusResponse(enabled=False, running=False, jobs=[])
    return SchedulerStatusResponse(
        enabled=True,
        running=scheduler.running,
        jobs=[ScheduledJobResponse(**job) for job in scheduler.jobs()],
    )
