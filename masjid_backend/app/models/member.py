"""
Member database model.
"""

from sqlalchemy import Column, Integer, String, Text, Date, DateTime, Numeric, Enum
from sqlalchemy.sql import func
from masjid_backend.app.db.session import Base
from masjid_backend.app.models.enums import MemberStatus


class Member(Base):
    """
    Committee member who owes monthly dues.

    total_debt is a cache of the member's outstanding debts and is only
    written by the ledger engine.
    """
    __tablename__ = "members"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False, index=True)
    phone = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    status = Column(Enum(MemberStatus), default=MemberStatus.ACTIVE, nullable=False, index=True)
    join_date = Column(Date, nullable=False)

    monthly_dues = Column(Numeric(12, 2), nullable=False, default=0)
    total_debt = Column(Numeric(12, 2), nullable=False, default=0)

    # Set when the row came from a replayed offline operation
    client_operation_id = Column(String(64), unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Member(id={self.id}, name='{self.name}', status='{self.status.value}')>"
