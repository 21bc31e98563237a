"""
Debt database model.

A single owed amount (monthly dues, late fee or ad-hoc charge).
"""

from sqlalchemy import Column, Integer, String, Text, Date, DateTime, Numeric, Enum, ForeignKey
from sqlalchemy.sql import func
from masjid_backend.app.db.session import Base
from masjid_backend.app.models.enums import DebtType, DebtStatus


class Debt(Base):
    """
    Debt model.

    Paid debts are never reopened. The unpaid part of a partially covered
    debt lives on as a new row pointing back through parent_debt_id.

    generation_key is set only on debts created by monthly/historical
    generation ("<member_id>:<yyyy>-<mm>") so the database rejects a second
    generated dues record for the same period.
    """
    __tablename__ = "debts"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey('members.id', ondelete="CASCADE"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    type = Column(Enum(DebtType), default=DebtType.MONTHLY_DUES, nullable=False)
    description = Column(Text, nullable=True)

    due_date = Column(Date, nullable=False, index=True)
    status = Column(Enum(DebtStatus), default=DebtStatus.PENDING, nullable=False, index=True)

    # Dues period
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)

    generation_key = Column(String(50), unique=True, nullable=True)
    parent_debt_id = Column(Integer, ForeignKey('debts.id', ondelete="SET NULL"), nullable=True)

    # Set when the row came from a replayed offline operation
    client_operation_id = Column(String(64), unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Debt(id={self.id}, member_id={self.member_id}, amount={self.amount}, status='{self.status.value}')>"
