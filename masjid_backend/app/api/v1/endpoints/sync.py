"""
Offline Sync Endpoints.

Clients upload the mutations they queued while offline, then trigger a
replay. Re-uploading a batch is harmless: known operation ids are
reported as duplicates.
"""

from fastapi import APIRouter, Depends, status
from masjid_backend.app.core.dependencies import get_sync_relay
from masjid_backend.app.schemas.sync import (
    SyncBatchRequest, EnqueueResponse, ReplayResponse, SyncStatusResponse, SyncOperationResponse
)
from masjid_backend.app.services.sync_relay import SyncRelay, ReplayReport

router = APIRouter(prefix="/sync", tags=["Sync"])


def _replay(report: ReplayReport) -> ReplayResponse:
    return ReplayResponse(
        applied=report.applied,
        failed=report.failed,
        in_flight=report.in_flight,
        halted=report.halted,
        halt_reason=report.halt_reason,
        requeued=report.requeued,
    )


@router.post("/operations", response_model=EnqueueResponse, status_code=status.HTTP_202_ACCEPTED)
async def enqueue_operations(batch: SyncBatchRequest, relay: SyncRelay = Depends(get_sync_relay)):
    report = await relay.enqueue(batch.operations)
    return EnqueueResponse(accepted=report.accepted, duplicates=report.duplicates)


@router.post("/replay", response_model=ReplayResponse)
async def replay_operations(relay: SyncRelay = Depends(get_sync_relay)):
    """Replay queued operations in client timestamp order."""
    return _replay(await relay.replay())


@router.post("/retry-failed", response_model=ReplayResponse)
async def retry_failed_operations(relay: SyncRelay = Depends(get_sync_relay)):
    return _replay(await relay.retry_failed())


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(relay: SyncRelay = Depends(get_sync_relay)):
    current = await relay.get_status()
    return SyncStatusResponse(
        counts=current["counts"],
        breaker_state=current["breaker_state"],
        dead_letters=current["dead_letters"],
        failed_operations=[SyncOperationResponse.model_validate(op) for op in current["failed_operations"]],
    )
