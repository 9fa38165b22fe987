"""Execution schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.constants import ExecutionStatus


class ExecutionCreate(BaseModel):
    """Request to trigger a workflow for one form submission."""

    payload: Dict[str, Any] = Field(default_factory=dict, description="Submission data, seeded as submission.*")


class HistoryEntryResponse(BaseModel):
    """One visited node and its result."""

    node_id: str
    node_type: str
    result: Dict[str, Any] = Field(description="NodeResult: kind plus its fields")
    timestamp: Optional[datetime] = None
    duration_ms: int = 0


class ExecutionResponse(BaseModel):
    """Execution information response."""

    id: str = Field(description="Execution ID")
    workflow_id: str = Field(description="Workflow ID")
    submission_id: str = Field(description="Submission the execution was triggered by")
    status: ExecutionStatus = Field(description="running, waiting, completed, failed or cancelled")
    current_node_id: Optional[str] = Field(default=None, description="Node being (re-)entered")
    resume_after: Optional[datetime] = Field(default=None, description="Earliest resume time when waiting")
    waiting_reason: Optional[str] = Field(default=None, description="Why the execution is waiting")
    attempt_counters: Dict[str, int] = Field(default_factory=dict, description="Retries per node")
    output: Dict[str, Any] = Field(default_factory=dict, description="Resolved output of the end node")
    error: Optional[str] = Field(default=None, description="Final error when failed")
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    duration_ms: int = Field(default=0)


class ExecutionDetailResponse(ExecutionResponse):
    """Execution with its context and visit history."""

    context: Dict[str, Any] = Field(default_factory=dict)
    history: List[HistoryEntryResponse] = Field(default_factory=list)


class ExecutionStatsResponse(BaseModel):
    """Aggregate execution statistics for a period."""

    period: str
    workflow_id: Optional[str] = None
    total: int
    completed: int
    failed: int
    running: int
    waiting: int
    cancelled: int
    success_rate: float
    avg_time_ms: float
    max_time_ms: int
    min_time_ms: int
