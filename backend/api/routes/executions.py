"""Execution API routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.schemas.execution import ExecutionDetailResponse, ExecutionStatsResponse
from app.dependencies import get_service
from services.automation_service import AutomationService

router = APIRouter()


@router.get("/stats", response_model=ExecutionStatsResponse)
async def execution_stats(
    workflow_id: Optional[str] = Query(default=None),
    period: str = Query(default="day", description="hour, day, week or month"),
    service: AutomationService = Depends(get_service),
):
    """Execution counts, success rate and timing for a period."""
    return await service.statistics(workflow_id=workflow_id, period=period)


@router.get("/{execution_id}", response_model=ExecutionDetailResponse)
async def get_execution(
    execution_id: str,
    service: AutomationService = Depends(get_service),
):
    """Execution detail including context and visit history."""
    record = await service.get_execution(execution_id)
    return record.to_dict()


@router.post("/{execution_id}/cancel", response_model=ExecutionDetailResponse)
async def cancel_execution(
    execution_id: str,
    service: AutomationService = Depends(get_service),
):
    """Cancel a running or waiting execution (409 if already finished)."""
    record = await service.cancel(execution_id)
    return record.to_dict()


@router.post("/{execution_id}/resume", response_model=ExecutionDetailResponse)
async def resume_execution(
    execution_id: str,
    force: bool = Query(default=False, description="Resume before resume_after has passed"),
    service: AutomationService = Depends(get_service),
):
    """Manually resume a waiting execution (409 if not waiting or not due)."""
    record = await service.resume(execution_id, force=force)
    return record.to_dict()
