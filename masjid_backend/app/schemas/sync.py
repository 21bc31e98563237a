"""
Offline sync schemas.

A client that was disconnected sends the mutations it queued; each one
carries an id the client generated when it was queued.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Dict, Any, List
from masjid_backend.app.models.enums import SyncOperationType, SyncTable, SyncOperationStatus


class SyncOperationIn(BaseModel):
    client_operation_id: str = Field(..., min_length=1, max_length=64)
    operation_type: SyncOperationType
    table: SyncTable
    payload: Dict[str, Any] = Field(default_factory=dict)
    client_timestamp: datetime


class SyncBatchRequest(BaseModel):
    operations: List[SyncOperationIn] = Field(..., min_length=1, max_length=500)


class EnqueueResponse(BaseModel):
    accepted: List[str]
    duplicates: List[str]


class ReplayResponse(BaseModel):
    applied: List[str]
    failed: Dict[str, str]
    in_flight: List[str]
    halted: bool
    halt_reason: Optional[str] = None
    requeued: int = 0


class SyncOperationResponse(BaseModel):
    id: int
    client_operation_id: str
    operation_type: SyncOperationType
    table_name: SyncTable
    status: SyncOperationStatus
    attempts: int
    last_error: Optional[str]
    client_timestamp: datetime
    applied_at: Optional[datetime]

    class Config:
        from_attributes = True


class SyncStatusResponse(BaseModel):
    counts: Dict[str, int]
    breaker_state: str
    dead_letters: int
    failed_operations: List[SyncOperationResponse]
