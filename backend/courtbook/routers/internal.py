# backend/courtbook/routers/internal.py
"""
Internal endpoints for schedulers.

POST /internal/sweep-expired - Expire lapsed holds (cron / external scheduler)
"""

from fastapi import APIRouter, Depends

from ..dependencies import get_expiry_sweeper
from ..schemas.sweep import SweepReportRead
from ..services.expiry_sweeper import ExpirySweeper


router = APIRouter(prefix="/internal", tags=["internal"])


@router.post("/sweep-expired", response_model=SweepReportRead)
def sweep_expired(sweeper: ExpirySweeper = Depends(get_expiry_sweeper)):
    return SweepReportRead.model_validate(sweeper.sweep())
