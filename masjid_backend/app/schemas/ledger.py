"""
Ledger job schemas.

Responses for the administrative ledger endpoints.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Dict, List


class GenerateMonthlyRequest(BaseModel):
    """Period to generate; both default to the current month."""
    month: Optional[int] = Field(None, ge=1, le=12)
    year: Optional[int] = Field(None, ge=1900, le=2100)


class GenerationReportResponse(BaseModel):
    year: Optional[int] = None
    month: Optional[int] = None
    member_id: Optional[int] = None
    created: int
    created_debt_ids: List[int]
    skipped: int
    failures: Dict[int, str]
    total_debt: Optional[float] = None


class OverdueSweepResponse(BaseModel):
    checked_at: datetime
    transitioned: int
    transitioned_debt_ids: List[int]
    member_ids: List[int]


class MonthlyCycleResponse(BaseModel):
    ok: bool
    generation: Optional[GenerationReportResponse] = None
    sweep: Optional[OverdueSweepResponse] = None
    recalculated: Dict[int, float]
    recalculation_failures: Dict[int, str]
    step_errors: Dict[str, str]


class InitializationResponse(BaseModel):
    ok: bool
    created: int
    members: Dict[int, GenerationReportResponse]
    failures: Dict[int, str]


class ScheduledJobResponse(BaseModel):
    id: str
    trigger: str
    next_run_time: Optional[datetime] = None


class SchedulerStatusResponse(BaseModel):
    enabled: bool
    running: bool
    jobs: List[ScheduledJobResponse]
