"""SyncRecord model: one row per external-system call attempt."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class SyncRecord(BaseModel):
    """Append-only audit row of an integration attempt.

    Rows are never updated; a retry adds a new row with a higher
    ``attempt_number``.
    """

    __tablename__ = "sync_records"
    __table_args__ = (
        Index("ix_sync_records_submission_integration", "submission_id", "integration_id"),
    )

    submission_id: Mapped[str] = mapped_column(nullable=False, index=True)
    integration_id: Mapped[str] = mapped_column(nullable=False, index=True)
    status: Mapped[str] = mapped_column(nullable=False, index=True)
    external_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(nullable=True)
    attempt_number: Mapped[int] = mapped_column(default=1)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
