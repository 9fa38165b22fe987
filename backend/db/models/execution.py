"""Execution model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import ExecutionStatus
from db.base import BaseModel


class Execution(BaseModel):
    """One run of a workflow for one submission.

    Attributes:
        workflow_id: Workflow the run was started from
        submission_id: Identifier of the triggering submission
        workflow_snapshot: Graph captured when the run started
        context: Serialized context store
        current_node_id: Node to enter on the next turn
        status: running, waiting, completed, failed, cancelled
        attempt_counters: Retry count per node id
        resume_after: Earliest time a waiting run may be resumed
        waiting_reason: Why the run is waiting ("scheduled delay", "retry", ...)
        history: Append-only log of visited nodes
        output: End node output
        error: Terminal failure message
    """

    __tablename__ = "executions"
    __table_args__ = (
        Index("ix_executions_status_resume_after", "status", "resume_after"),
    )

    workflow_id: Mapped[str] = mapped_column(nullable=False, index=True)
    submission_id: Mapped[str] = mapped_column(nullable=False, index=True)
    workflow_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    context: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    current_node_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(
        default=ExecutionStatus.RUNNING.value, index=True
    )
    attempt_counters: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    resume_after: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    waiting_reason: Mapped[Optional[str]] = mapped_column(nullable=True)
    history: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    output: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    error: Mapped[Optional[str]] = mapped_column(nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    duration_ms: Mapped[int] = mapped_column(default=0)
