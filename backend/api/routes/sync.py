"""Sync ledger API routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.schemas.sync import SyncHistoryResponse, SyncStatsResponse
from app.dependencies import get_service
from services.automation_service import AutomationService

router = APIRouter()


@router.get("/submissions/{submission_id}", response_model=SyncHistoryResponse)
async def submission_history(
    submission_id: str,
    service: AutomationService = Depends(get_service),
):
    """Every external delivery attempt for a submission, oldest first."""
    records = await service.sync_history(submission_id)
    return {
        "submission_id": submission_id,
        "records": [r.to_dict() for r in records],
        "count": len(records),
    }


@router.get("/stats", response_model=SyncStatsResponse)
async def sync_stats(
    integration_id: Optional[str] = Query(default=None),
    period: str = Query(default="all", description="today, week, month or all"),
    service: AutomationService = Depends(get_service),
):
    return await service.sync_stats(integration_id=integration_id, period=period)
