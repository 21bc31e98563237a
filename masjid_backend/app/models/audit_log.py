"""
Audit Log Database Model.

Tracks committee actions on members, payments and debts.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from masjid_backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - MEMBER_REGISTERED / MEMBER_UPDATED / MEMBER_DELETED
    - PAYMENT_RECORDED / PAYMENT_UPDATED / PAYMENT_DELETED
    - DEBT_ADDED / DEBT_STATUS_CHANGED
    - ledger batch jobs (initialization, monthly cycle, overdue sweep)
    """
    __tablename__ = "audit_logs"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    action = Column(String(100), nullable=False, index=True)

    # Which record the action touched
    member_id = Column(Integer, index=True, nullable=True)
    entity = Column(String(50), nullable=True)
    entity_id = Column(Integer, nullable=True)

    # "api", "sync", "scheduler"
    source = Column(String(50), nullable=True)

    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity}:{self.entity_id})>"
