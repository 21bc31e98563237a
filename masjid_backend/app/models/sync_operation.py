"""
Queued offline mutation received from a client that was disconnected.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum
from sqlalchemy.sql import func
from masjid_backend.app.db.session import Base
from masjid_backend.app.models.enums import SyncOperationType, SyncTable, SyncOperationStatus


class SyncOperation(Base):
    """
    Sync operation table.

    client_operation_id is generated by the client when the mutation is
    queued; the unique constraint makes re-sent batches harmless.
    """
    __tablename__ = "sync_operations"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    client_operation_id = Column(String(64), unique=True, nullable=False, index=True)

    operation_type = Column(Enum(SyncOperationType), nullable=False)
    table_name = Column(Enum(SyncTable), nullable=False)
    payload = Column(JSON, nullable=False)
    client_timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    status = Column(Enum(SyncOperationStatus), default=SyncOperationStatus.QUEUED, nullable=False, index=True)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    applied_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return (
            f"<SyncOperation(id={self.id}, op='{self.operation_type.value} {self.table_name.value}', "
            f"status='{self.status.value}')>"
        )
