"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from masjid_backend.app.api.v1.endpoints import members, payments, debts, ledger, sync

router = APIRouter()

router.include_router(members.router)
router.include_router(payments.router)
router.include_router(debts.router)

# Ledger jobs and offline sync
router.include_router(ledger.router)
router.include_router(sync.router)
