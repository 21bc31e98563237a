"""
Audit logging service for committee actions and ledger jobs.

Every change to members, payments and debts is recorded with the channel
it came through (api, sync or scheduler).
"""

from typing import Optional, Dict, Any, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from masjid_backend.app.models.audit_log import AuditLog


class AuditAction:
    """Standardized audit action constants."""
    MEMBER_REGISTERED = "MEMBER_REGISTERED"
    MEMBER_UPDATED = "MEMBER_UPDATED"
    MEMBER_DELETED = "MEMBER_DELETED"
    MEMBER_DEBT_RECALCULATED = "MEMBER_DEBT_RECALCULATED"

    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    PAYMENT_UPDATED = "PAYMENT_UPDATED"
    PAYMENT_DELETED = "PAYMENT_DELETED"
    PAYMENT_ALLOCATION_FAILED = "PAYMENT_ALLOCATION_FAILED"

    DEBT_ADDED = "DEBT_ADDED"
    DEBT_STATUS_CHANGED = "DEBT_STATUS_CHANGED"

    # Ledger batch jobs
    DEBT_SYSTEM_INITIALIZED = "DEBT_SYSTEM_INITIALIZED"
    MONTHLY_DEBTS_GENERATED = "MONTHLY_DEBTS_GENERATED"
    OVERDUE_SWEEP_COMPLETED = "OVERDUE_SWEEP_COMPLETED"
    MONTHLY_CYCLE_COMPLETED = "MONTHLY_CYCLE_COMPLETED"


class AuditSource:
    API = "api"
    SYNC = "sync"
    SCHEDULER = "scheduler"


async def log_event(
    db: AsyncSession,
    action: str,
    member_id: Optional[int] = None,
    entity: Optional[str] = None,
    entity_id: Optional[int] = None,
    source: str = AuditSource.API,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Log a committee action or ledger job to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        member_id: Member the action concerns (if any)
        entity: Record type touched ("member", "payment", "debt")
        entity_id: ID of the touched record
        source: Channel the action came through (use AuditSource constants)
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        action=action,
        member_id=member_id,
        entity=entity,
        entity_id=entity_id,
        source=source,
        meta_data=metadata
    )

    db.add(audit_log)
    await db.commit()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    member_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> List[AuditLog]:
    """
    Retrieve audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if member_id:
        query = query.where(AuditLog.member_id == member_id)

    if action:
        query = query.where(AuditLog.action == action)

    result = await db.execute(query.limit(limit))
    return list(result.scalars().all())
