"""
Payment database model.
"""

from sqlalchemy import Column, Integer, String, Text, Date, DateTime, Numeric, Enum, ForeignKey
from sqlalchemy.sql import func
from masjid_backend.app.db.session import Base
from masjid_backend.app.models.enums import AllocationStatus


class Payment(Base):
    """
    Money received from a member.

    month/year is the dues period the payment is recorded against; which
    debts it actually settles is decided by allocation. allocation_status
    lets callers tell "payment recorded, allocation failed" apart from a
    payment that was never stored.
    """
    __tablename__ = "payments"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey('members.id', ondelete="CASCADE"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(Date, nullable=False, index=True)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)

    notes = Column(Text, nullable=True)
    receipt_number = Column(String(50), nullable=True)

    allocation_status = Column(Enum(AllocationStatus), default=AllocationStatus.PENDING, nullable=False)
    allocation_error = Column(Text, nullable=True)

    # Set when the row came from a replayed offline operation
    client_operation_id = Column(String(64), unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Payment(id={self.id}, member_id={self.member_id}, amount={self.amount})>"
