"""Sync ledger schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional

from core.constants import SyncStatus


class SyncRecordResponse(BaseModel):
    """One attempt to deliver a submission to an external system."""

    id: str
    submission_id: str
    integration_id: str
    status: SyncStatus
    external_id: Optional[str] = None
    error_message: Optional[str] = None
    attempt_number: int
    synced_at: datetime


class SyncHistoryResponse(BaseModel):
    """All attempts for one submission, oldest first."""

    submission_id: str
    records: List[SyncRecordResponse]
    count: int


class SyncStatsResponse(BaseModel):
    """Delivery statistics for one integration or all of them."""

    period: str = Field(description="today, week, month or all")
    integration_id: Optional[str] = None
    total: int
    success: int
    failed: int
    skipped: int
    success_rate: float
